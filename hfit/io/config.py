"""
Configuration of adaptive fitting runs.

Settings are read from YAML or JSON files and validated eagerly: an
invalid value raises ConfigurationError when the configuration is built,
never later during refinement.

Example YAML format:
    basis:
      degrees: [2, 2]
      elements: [4, 4]
      domain: [[0, 1], [0, 1]]

    refinement:
      percentage: 0.1
      extension: [2, 2]
      smoothing: 1.0e-6
      tolerance: 1.0e-3
      iterations: 5
      threshold: -1      # -1: derive from percentage, 0: global refinement
"""

import json
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import numpy as np
import yaml

from ..exceptions import ConfigurationError
from ..fitting.base import Fitting
from ..fitting.hfitting import HFitting
from ..fitting.refinement import validate_extension, validate_percentage
from ..geometry.thb import THBSplineBasis


@dataclass
class BasisConfig:
    """Level-0 tensor basis: degree, element count and interval per direction."""
    degrees: List[int] = field(default_factory=lambda: [2, 2])
    elements: List[int] = field(default_factory=lambda: [4, 4])
    domain: Optional[List[Tuple[float, float]]] = None

    def __post_init__(self):
        self.degrees = [int(p) for p in self.degrees]
        self.elements = [int(n) for n in self.elements]
        if len(self.degrees) == 0:
            raise ConfigurationError("basis.degrees must not be empty")
        if len(self.degrees) != len(self.elements):
            raise ConfigurationError(
                f"basis.degrees ({len(self.degrees)}) and basis.elements "
                f"({len(self.elements)}) differ in length"
            )
        if any(p < 0 for p in self.degrees):
            raise ConfigurationError(f"basis.degrees must be >= 0, got {self.degrees}")
        if any(n < 1 for n in self.elements):
            raise ConfigurationError(f"basis.elements must be >= 1, got {self.elements}")
        if self.domain is not None:
            self.domain = [(float(a), float(b)) for a, b in self.domain]
            if len(self.domain) != len(self.degrees):
                raise ConfigurationError("basis.domain needs one interval per direction")
            if any(a >= b for a, b in self.domain):
                raise ConfigurationError(f"basis.domain intervals must be increasing: {self.domain}")

    @property
    def dim(self) -> int:
        return len(self.degrees)

    def build(self) -> THBSplineBasis:
        """Create the level-0 THB basis."""
        return THBSplineBasis.uniform(self.degrees, self.elements, self.domain)


@dataclass
class FittingConfig:
    """All settings of an adaptive fitting run."""
    basis: BasisConfig = field(default_factory=BasisConfig)
    percentage: float = 0.1
    extension: Optional[List[int]] = None
    smoothing: float = 0.0
    tolerance: float = 1e-3
    iterations: int = 5
    threshold: float = -1.0

    def __post_init__(self):
        if isinstance(self.basis, dict):
            self.basis = BasisConfig(**self.basis)
        if self.extension is None:
            self.extension = [p for p in self.basis.degrees]
        self.percentage = validate_percentage(float(self.percentage))
        self.extension = list(validate_extension(self.extension, self.basis.dim))
        self.smoothing = float(self.smoothing)
        self.tolerance = float(self.tolerance)
        self.threshold = float(self.threshold)
        if self.smoothing < 0:
            raise ConfigurationError(f"smoothing must be >= 0, got {self.smoothing}")
        if self.tolerance < 0:
            raise ConfigurationError(f"tolerance must be >= 0, got {self.tolerance}")
        if int(self.iterations) != self.iterations or self.iterations < 0:
            raise ConfigurationError(f"iterations must be a non-negative integer, got {self.iterations}")
        self.iterations = int(self.iterations)
        if self.threshold < 0 and self.threshold != -1:
            raise ConfigurationError(
                f"threshold must be >= 0 or -1 (use percentage), got {self.threshold}"
            )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FittingConfig':
        """
        Build from the nested layout used in configuration files.

        Unknown keys are rejected so that typos do not pass silently.
        """
        data = dict(data or {})
        unknown = set(data) - {"basis", "refinement"}
        if unknown:
            raise ConfigurationError(f"Unknown configuration sections: {sorted(unknown)}")

        refinement = dict(data.get("refinement") or {})
        known = {"percentage", "extension", "smoothing", "tolerance", "iterations", "threshold"}
        unknown = set(refinement) - known
        if unknown:
            raise ConfigurationError(f"Unknown refinement settings: {sorted(unknown)}")

        basis = data.get("basis") or {}
        try:
            basis_config = BasisConfig(**basis)
        except TypeError as exc:
            raise ConfigurationError(f"Invalid basis section: {exc}") from exc
        return cls(basis=basis_config, **refinement)

    def to_dict(self) -> Dict[str, Any]:
        """Nested dictionary in the configuration file layout."""
        basis = asdict(self.basis)
        if basis["domain"] is not None:
            basis["domain"] = [list(interval) for interval in basis["domain"]]
        return {
            "basis": basis,
            "refinement": {
                "percentage": self.percentage,
                "extension": list(self.extension),
                "smoothing": self.smoothing,
                "tolerance": self.tolerance,
                "iterations": self.iterations,
                "threshold": self.threshold,
            },
        }


def load_config(filename: Union[str, Path]) -> FittingConfig:
    """
    Load a fitting configuration from a YAML (.yaml/.yml) or JSON (.json) file.
    """
    path = Path(filename)
    with open(path, 'r') as f:
        if path.suffix.lower() == ".json":
            data = json.load(f)
        elif path.suffix.lower() in (".yaml", ".yml"):
            data = yaml.safe_load(f)
        else:
            raise ConfigurationError(f"Unsupported configuration format: {path.suffix}")

    if data is not None and not isinstance(data, dict):
        raise ConfigurationError(f"Configuration root must be a mapping, got {type(data).__name__}")
    return FittingConfig.from_dict(data or {})


def save_config(config: FittingConfig, filename: Union[str, Path]) -> None:
    """Write a configuration as YAML or JSON, chosen by file suffix."""
    path = Path(filename)
    with open(path, 'w') as f:
        if path.suffix.lower() == ".json":
            json.dump(config.to_dict(), f, indent=2)
        else:
            yaml.safe_dump(config.to_dict(), f, sort_keys=False)


def setup_fitting_from_config(config: FittingConfig, param_values: np.ndarray,
                              points: np.ndarray) -> HFitting:
    """
    Set up basis, fitting session and refinement engine from a configuration.
    """
    basis = config.basis.build()
    fitting = Fitting(param_values, points, basis)
    return HFitting(fitting, config.percentage, config.extension, config.smoothing)
