"""
Model configuration for basin CO2 runs.

Single source of truth for the fixed basin lists and numeric defaults used by
the aggregation and routing stages. Everything a basin run needs is carried on
a ``ModelConfig`` instance that is passed explicitly into the pipeline.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Dict, FrozenSet, Optional, Tuple, Union

# ---------------------------------------------------------------------------
# Basin lists
# ---------------------------------------------------------------------------
# Great Lakes basins: no meaningful reach-scale statistics
GREAT_LAKES_BASINS: FrozenSet[str] = frozenset({"0418", "0419", "0424", "0426", "0428"})

# Basins whose hydrography carries artificial shoreline rivers
SHORELINE_FIX_BASINS: FrozenSet[str] = frozenset(
    {
        "0401",
        "0402",
        "0403",
        "0404",
        "0405",
        "0406",
        "0407",
        "0408",
        "0410",
        "0411",
        "0412",
        "0414",
    }
)

# Basins read from the repaired Indiana flowline files
ALTERNATE_HYDROGRAPHY_BASINS: FrozenSet[str] = frozenset(
    {"0508", "0509", "0514", "0512", "0712", "0404", "0405", "0410"}
)

# Parent code -> sub-basins modelled separately
COMPOSITE_BASINS: Dict[str, Tuple[str, ...]] = {"1710": ("1710a", "1710b")}

# ---------------------------------------------------------------------------
# Numeric defaults
# ---------------------------------------------------------------------------
SLOPE_FLOOR: float = 1e-5  # minimum realistic channel slope [-]
CATM_PPM: float = 410.0  # atmospheric CO2 [ppm]


@dataclass
class ModelConfig:
    """Configuration for a network of basin runs."""

    data_root: Path = Path("data")
    fix_dir: Optional[Path] = None
    excluded_basins: FrozenSet[str] = GREAT_LAKES_BASINS
    shoreline_fix_basins: FrozenSet[str] = SHORELINE_FIX_BASINS
    alternate_hydrography_basins: FrozenSet[str] = ALTERNATE_HYDROGRAPHY_BASINS
    composite_basins: Dict[str, Tuple[str, ...]] = field(
        default_factory=lambda: dict(COMPOSITE_BASINS)
    )
    slope_floor: float = SLOPE_FLOOR
    catm_ppm: float = CATM_PPM
    max_workers: int = 1

    def __post_init__(self) -> None:
        self.data_root = Path(self.data_root)
        self.fix_dir = Path(self.fix_dir) if self.fix_dir is not None else self.data_root
        self.excluded_basins = frozenset(str(b) for b in self.excluded_basins)
        self.shoreline_fix_basins = frozenset(str(b) for b in self.shoreline_fix_basins)
        self.alternate_hydrography_basins = frozenset(
            str(b) for b in self.alternate_hydrography_basins
        )
        self.composite_basins = {
            str(parent): tuple(str(c) for c in children)
            for parent, children in self.composite_basins.items()
        }
        if self.slope_floor <= 0:
            raise ValueError(f"slope_floor must be positive, got {self.slope_floor}")
        if self.max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {self.max_workers}")

    def is_excluded(self, huc4: str) -> bool:
        return str(huc4) in self.excluded_basins

    def fix_path(self, huc4: str) -> Path:
        """Path of the shoreline fix table for a basin."""
        return self.fix_dir / f"fix_{huc4}.csv"

    def to_dict(self) -> Dict:
        """JSON-serialisable view of the configuration."""
        out = asdict(self)
        out["data_root"] = str(self.data_root)
        out["fix_dir"] = str(self.fix_dir)
        for key in ("excluded_basins", "shoreline_fix_basins", "alternate_hydrography_basins"):
            out[key] = sorted(out[key])
        out["composite_basins"] = {k: list(v) for k, v in self.composite_basins.items()}
        return out

    @classmethod
    def from_dict(cls, values: Dict) -> "ModelConfig":
        known = {f.name for f in fields(cls)}
        unknown = set(values) - known
        if unknown:
            raise ValueError(f"Unknown configuration keys: {sorted(unknown)}")
        return cls(**values)

    @classmethod
    def from_json(cls, path: Union[str, Path]) -> "ModelConfig":
        """Load a configuration from a JSON file."""
        with open(path) as fh:
            return cls.from_dict(json.load(fh))
