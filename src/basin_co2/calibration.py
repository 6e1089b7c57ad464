"""
Calibrated model parameters per basin.

The transport solver is calibrated separately for every basin; what comes back
is four multipliers (benthic exchange and water-column respiration, for rivers
and lakes/reservoirs) plus the fitness score of the best run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Mapping, Optional

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

PARAMETER_COLUMNS: tuple[str, ...] = ("Cbz_riv", "Cbz_lake", "Fwc_riv", "Fwc_lake")


def _as_float(value) -> float:
    if value is None:
        return np.nan
    try:
        return float(value)
    except (TypeError, ValueError):
        return np.nan


def calibration_cost(fitness) -> float:
    """Calibration cost ``(1/F)/2`` [ppm]; NaN for a non-positive or undefined fitness."""
    if fitness is None or not np.isfinite(fitness) or fitness <= 0:
        return np.nan
    return (1 / fitness) / 2


@dataclass
class CalibratedParameters:
    """
    Calibration result for one basin.

    Attributes
    ----------
    cbz_riv, cbz_lake : float
        Benthic exchange multipliers for rivers and lakes/reservoirs.
    fwc_riv, fwc_lake : float
        Water-column respiration multipliers.
    fitness : float
        Fitness score of the best calibration run (higher is better).
    """

    cbz_riv: float = np.nan
    cbz_lake: float = np.nan
    fwc_riv: float = np.nan
    fwc_lake: float = np.nan
    fitness: float = np.nan

    @property
    def cost(self) -> float:
        return calibration_cost(self.fitness)

    @property
    def is_empty(self) -> bool:
        return all(
            np.isnan(v) for v in (self.cbz_riv, self.cbz_lake, self.fwc_riv, self.fwc_lake)
        )

    @classmethod
    def from_mapping(cls, values: Mapping) -> "CalibratedParameters":
        """Build from a mapping keyed either ``Cbz_riv`` style or ``cbz_riv`` style."""
        lowered = {str(k).lower(): v for k, v in values.items()}
        return cls(
            cbz_riv=_as_float(lowered.get("cbz_riv")),
            cbz_lake=_as_float(lowered.get("cbz_lake")),
            fwc_riv=_as_float(lowered.get("fwc_riv")),
            fwc_lake=_as_float(lowered.get("fwc_lake")),
            fitness=_as_float(lowered.get("fitness")),
        )


def combine_calibration_parameters(
    results: Mapping[str, Optional[CalibratedParameters]],
) -> pd.DataFrame:
    """
    Combine per-basin calibration results into one parameter table.

    Columns ``basin, Cbz_riv, Cbz_lake, Fwc_riv, Fwc_lake``. Basins without a
    result or whose four parameters are all missing are dropped.
    """
    rows = []
    for basin, params in results.items():
        if params is None or params.is_empty:
            logger.debug("No calibrated parameters for %s", basin)
            continue
        rows.append(
            {
                "basin": basin,
                "Cbz_riv": params.cbz_riv,
                "Cbz_lake": params.cbz_lake,
                "Fwc_riv": params.fwc_riv,
                "Fwc_lake": params.fwc_lake,
            }
        )
    return pd.DataFrame(rows, columns=["basin", *PARAMETER_COLUMNS])


def drop_duplicate_runs(df: pd.DataFrame, method_col: str = "method") -> pd.DataFrame:
    """Remove duplicated calibration runs (method labels ending in ``_1``)."""
    labels = df[method_col].astype(str)
    keep = ~labels.str.endswith("_1")
    return df.loc[keep].reset_index(drop=True)
