"""
Solver settings — every tunable of the guided projection loop in one place.

Settings are a plain dataclass so they can be built in code, serialised to
a dict (e.g. stored next to a design file) and rebuilt later::

    settings = SolverSettings(epsilon=1e-2, max_iterations=50)
    data = settings.to_dict()
    same = SolverSettings.from_dict(data)
"""

from __future__ import annotations

import math
import dataclasses
from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, Optional

from .errors import ConfigurationError


QR_BACKENDS = ("auto", "dense", "lsmr")


@dataclass(frozen=True)
class SolverSettings:
    """Configuration of a :class:`~bridges.GuidedProjectionAlgorithm`."""

    # Weight of the rows pulling X towards the previous iterate
    epsilon: float = 1e-3
    max_iterations: int = 100
    tolerance: float = 1e-10
    # Only used when energies are present (they never reach zero merit)
    step_tolerance: float = 1e-8

    qr_backend: str = "auto"
    dense_limit: int = 4000
    rank_tolerance: float = 1e-10
    lsmr_atol: float = 1e-12
    lsmr_btol: float = 1e-12
    lsmr_max_iterations: Optional[int] = None

    workers: int = 1

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """Raise :class:`ConfigurationError` on any invalid value."""
        if not math.isfinite(self.epsilon) or self.epsilon < 0.0:
            raise ConfigurationError(f"epsilon must be a finite value >= 0, got {self.epsilon!r}")
        if self.max_iterations < 0:
            raise ConfigurationError(f"max_iterations must be >= 0, got {self.max_iterations!r}")
        for name in ("tolerance", "step_tolerance", "rank_tolerance", "lsmr_atol", "lsmr_btol"):
            value = getattr(self, name)
            if not value > 0.0:
                raise ConfigurationError(f"{name} must be > 0, got {value!r}")
        if self.qr_backend not in QR_BACKENDS:
            raise ConfigurationError(
                f"qr_backend must be one of {', '.join(QR_BACKENDS)}, got {self.qr_backend!r}"
            )
        if self.dense_limit < 0:
            raise ConfigurationError(f"dense_limit must be >= 0, got {self.dense_limit!r}")
        if self.lsmr_max_iterations is not None and self.lsmr_max_iterations < 1:
            raise ConfigurationError(
                f"lsmr_max_iterations must be None or >= 1, got {self.lsmr_max_iterations!r}"
            )
        if self.workers < 1:
            raise ConfigurationError(f"workers must be >= 1, got {self.workers!r}")

    def replace(self, **changes: Any) -> "SolverSettings":
        """Return a validated copy with *changes* applied."""
        known = {f.name for f in fields(self)}
        unknown = sorted(set(changes) - known)
        if unknown:
            raise ConfigurationError(f"Unknown solver settings: {', '.join(unknown)}")
        return dataclasses.replace(self, **changes)

    # -- Serialisation ---------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "SolverSettings":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(d) - known)
        if unknown:
            raise ConfigurationError(f"Unknown solver settings: {', '.join(unknown)}")
        return cls(**d)
