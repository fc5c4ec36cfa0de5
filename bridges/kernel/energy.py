"""
Energies and energy sets — the soft counterpart of constraints.

Each :class:`Energy` contributes the residual ``Ki·x − Si`` to the
least-squares objective with its weight; it never has to vanish.
"""

from __future__ import annotations

from typing import Iterator, List, Optional, Sequence

import numpy as np

from ..errors import ConfigurationError, DimensionMismatchError
from .constraint import check_weight
from .converter import Converter, GlobalLinearForm
from .energy_types import EnergyType
from .variable_set import GlobalVector, VariableReference, VariableRegistry


class Energy:
    """One energy of an :class:`EnergySet`, bound to concrete variables."""

    def __init__(self, energy_set: "EnergySet", index: int, references: List[VariableReference], weight: float):
        self._set = energy_set
        self._index = index
        self._references = references
        self._weight = check_weight(weight)
        self._converter = Converter(references)
        self._global: Optional[GlobalLinearForm] = None

    @property
    def index(self) -> int:
        return self._index

    @property
    def energy_set(self) -> "EnergySet":
        return self._set

    @property
    def references(self) -> List[VariableReference]:
        return list(self._references)

    @property
    def converter(self) -> Converter:
        return self._converter

    @property
    def weight(self) -> float:
        return self._weight

    @weight.setter
    def weight(self, value: float):
        self._weight = check_weight(value)

    @property
    def si(self) -> float:
        return self._set.energy_type.si

    @property
    def global_form(self) -> Optional[GlobalLinearForm]:
        return self._global

    @property
    def global_ki(self) -> dict:
        return self._global.ki_entries() if self._global is not None else {}

    @property
    def source(self) -> str:
        return (
            f"energy set {self._set.set_index} "
            f"[{type(self._set.energy_type).__name__}], energy {self._index}"
        )

    def residual(self, x: GlobalVector) -> float:
        if self._global is None:
            raise ConfigurationError(f"{self.source} has not been globalised yet")
        return self._global.residual(x.values)

    def globalise(self, ki: np.ndarray, si: float):
        self._global = GlobalLinearForm(self._converter.indices, self._converter.globalise_vector(ki), si)

    def __repr__(self) -> str:
        return f"Energy({self.source}, weight={self._weight})"


class EnergySet:
    """All energies sharing one energy-type instance."""

    def __init__(self, energy_type: EnergyType, set_index: int, registry: VariableRegistry):
        if not isinstance(energy_type, EnergyType):
            raise ConfigurationError(f"Expected an energy type, got {type(energy_type).__name__}")
        self._type = energy_type
        self._set_index = set_index
        self._registry = registry
        self._energies: List[Energy] = []

    @property
    def energy_type(self) -> EnergyType:
        return self._type

    @property
    def set_index(self) -> int:
        return self._set_index

    @property
    def energy_count(self) -> int:
        return len(self._energies)

    @property
    def energies(self) -> List[Energy]:
        return list(self._energies)

    def __getitem__(self, index: int) -> Energy:
        return self._energies[index]

    def __iter__(self) -> Iterator[Energy]:
        return iter(self._energies)

    def __len__(self) -> int:
        return len(self._energies)

    def add_energy(self, variables: Sequence, weight: float = 1.0) -> Energy:
        """Bind the set's energy type to *variables* (same rules as constraints)."""
        references = self._registry.resolve(variables)
        size = sum(r.dimension for r in references)
        if size != self._type.dimension:
            raise DimensionMismatchError(
                f"{type(self._type).__name__} expects a reduced vector of {self._type.dimension} "
                f"components, the given variables provide {size}"
            )
        energy = Energy(self, len(self._energies), references, weight)
        self._energies.append(energy)
        return energy

    def compute_and_globalise(self, x: GlobalVector):
        """Globalise energies that have not been globalised yet; forms are constant."""
        form = self._type.local_form
        for energy in self._energies:
            if energy.global_form is None:
                energy.globalise(form.ki, form.si)

    def __repr__(self) -> str:
        return (
            f"EnergySet(index={self._set_index}, type={type(self._type).__name__}, "
            f"energies={len(self._energies)})"
        )
