"""
Reach table model.

Canonical column names for the per-reach attribute table and the two-variant
``Waterbody`` type that every physical formula dispatches on.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

import numpy as np
import pandas as pd


class ReachTableError(Exception):
    """Raised when a reach table violates the input contract."""


class Waterbody(Enum):
    """Waterbody variant of a reach."""

    RIVER = "River"
    LAKE_RESERVOIR = "Lake/Reservoir"

    @classmethod
    def parse(cls, tag) -> Optional["Waterbody"]:
        """Parse a waterbody tag, returning None for anything unrecognised."""
        if isinstance(tag, cls):
            return tag
        if not isinstance(tag, str):
            return None
        return _ALIASES.get(tag.strip().lower().replace(" ", ""))


_ALIASES = {
    "river": Waterbody.RIVER,
    "lake/reservoir": Waterbody.LAKE_RESERVOIR,
    "lakereservoir": Waterbody.LAKE_RESERVOIR,
    "lake": Waterbody.LAKE_RESERVOIR,
    "reservoir": Waterbody.LAKE_RESERVOIR,
}

# ── Columns ─────────────────────────────────────────────────────────────────

REQUIRED_COLUMNS: tuple[str, ...] = (
    "reach_id",
    "waterbody",
    "Q_m3_s",
    "from_node",
    "to_node",
)

OPTIONAL_COLUMNS: tuple[str, ...] = (
    # River geometry
    "length_km",
    "slope",
    # Lake/reservoir geometry
    "lake_volume_m3",
    "lake_area_m2",
    # Temperature
    "temp_water_c",
    "temp_air_c",
    # AHG coefficients
    "a",
    "b",
    "c",
    "f",
    # Network
    "stream_order",
    "conus",
)

DERIVED_COLUMNS: tuple[str, ...] = (
    "W_m",
    "D_m",
    "V_m_s",
    "restime_s",
    "henry",
    "schmidt",
    "k600_m_dy",
    "k600_m_s",
    "kco2_m_s",
    "kco2_s",
    "kbz_s",
    "SA_m2",
    "FCO2_gC_yr",
    "is_boundary_outflow",
)


def normalize_reach_table(df: pd.DataFrame) -> pd.DataFrame:
    """
    Return a copy of a reach table ready for the physical model.

    Missing optional columns are added as NaN and ``waterbody`` is parsed into
    ``Waterbody`` members (None for unknown tags).

    Raises
    ------
    ReachTableError
        If a required column is absent.
    """
    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise ReachTableError(f"Reach table is missing required columns: {missing}")

    out = df.copy()
    for col in OPTIONAL_COLUMNS:
        if col not in out.columns:
            out[col] = np.nan
    if out["conus"].isna().all():
        out["conus"] = 1
    out["waterbody"] = pd.Series(
        [Waterbody.parse(w) for w in out["waterbody"]], index=out.index, dtype=object
    )
    return out.reset_index(drop=True)


def _is_variant(df: pd.DataFrame, variant: Waterbody) -> np.ndarray:
    return np.array([Waterbody.parse(w) is variant for w in df["waterbody"]], dtype=bool)


def is_river(df: pd.DataFrame) -> np.ndarray:
    return _is_variant(df, Waterbody.RIVER)


def is_lake(df: pd.DataFrame) -> np.ndarray:
    return _is_variant(df, Waterbody.LAKE_RESERVOIR)
