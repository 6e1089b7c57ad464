"""
Topological gap filling for reach slopes and temperatures.

Flat, missing or erroneous values are replaced by the mean of the reach's
immediate upstream neighbours (reaches whose ``to_node`` is this reach's
``from_node``) and immediate downstream neighbours (reaches whose
``from_node`` is this reach's ``to_node``). Imputation is strictly one hop;
deciding which reaches are invalid is the caller's job.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from .config import SLOPE_FLOOR

logger = logging.getLogger(__name__)


def _neighbor_indexes(
    from_node, to_node, from_nodes: np.ndarray, to_nodes: np.ndarray
) -> np.ndarray:
    upstream = np.flatnonzero(to_nodes == from_node)
    downstream = np.flatnonzero(from_nodes == to_node)
    return np.concatenate([upstream, downstream])


def repair_slope(
    from_node,
    to_node,
    slopes: Sequence[float],
    from_nodes: Sequence,
    to_nodes: Sequence,
    floor: float = SLOPE_FLOOR,
) -> float:
    """
    Slope for a reach from its immediate neighbours.

    Neighbour slopes <= 0 (or missing) are ignored so other erroneous slopes do
    not propagate. With no valid neighbour the minimum realistic channel slope
    ``floor`` is returned, otherwise the arithmetic mean.
    """
    slopes = np.asarray(slopes, dtype=float)
    idx = _neighbor_indexes(from_node, to_node, np.asarray(from_nodes), np.asarray(to_nodes))
    return _mean_positive(slopes[idx], floor)


def repair_temperature(
    from_node,
    to_node,
    temps: Sequence[float],
    from_nodes: Sequence,
    to_nodes: Sequence,
) -> float:
    """Mean temperature of the immediate neighbours; NaN if none is defined."""
    temps = np.asarray(temps, dtype=float)
    idx = _neighbor_indexes(from_node, to_node, np.asarray(from_nodes), np.asarray(to_nodes))
    return _nanmean(temps[idx])


def _mean_positive(values: np.ndarray, floor: float) -> float:
    valid = values[values > 0]
    if len(valid) == 0:
        return floor
    return float(valid.mean())


def _nanmean(values: np.ndarray) -> float:
    valid = values[~np.isnan(values)]
    if len(valid) == 0:
        return float("nan")
    return float(valid.mean())


class NodeIndex:
    """
    Node-id lookups for one basin's reach table.

    Built once per basin so neighbour queries do not rescan the node vectors.

    Parameters
    ----------
    from_nodes, to_nodes : sequence
        Row-aligned node identifiers of every reach in the basin.
    """

    def __init__(self, from_nodes: Sequence, to_nodes: Sequence):
        self.by_from: Dict[object, List[int]] = defaultdict(list)
        self.by_to: Dict[object, List[int]] = defaultdict(list)
        for pos, node in enumerate(from_nodes):
            self.by_from[node].append(pos)
        for pos, node in enumerate(to_nodes):
            self.by_to[node].append(pos)

    @classmethod
    def from_frame(cls, df: pd.DataFrame) -> "NodeIndex":
        return cls(df["from_node"].tolist(), df["to_node"].tolist())

    def upstream(self, from_node) -> List[int]:
        """Rows draining into a reach that starts at ``from_node``."""
        return self.by_to.get(from_node, [])

    def downstream(self, to_node) -> List[int]:
        """Rows fed by a reach that ends at ``to_node``."""
        return self.by_from.get(to_node, [])

    def neighbors(self, from_node, to_node) -> List[int]:
        return self.upstream(from_node) + self.downstream(to_node)


def fill_network_gaps(
    df: pd.DataFrame,
    slope_invalid: Optional[np.ndarray] = None,
    temp_invalid: Optional[np.ndarray] = None,
    floor: float = SLOPE_FLOOR,
    temp_columns: Sequence[str] = ("temp_water_c", "temp_air_c"),
) -> pd.DataFrame:
    """
    Repair flagged slopes and temperatures across a whole basin.

    Every neighbour value is read from the table as loaded, so a repaired
    reach never feeds another repair in the same pass.

    Parameters
    ----------
    df : pd.DataFrame
        Reach table with ``from_node``, ``to_node``, ``slope`` and the
        temperature columns.
    slope_invalid : np.ndarray of bool, optional
        Rows whose slope must be repaired.
    temp_invalid : np.ndarray of bool, optional
        Rows whose temperatures must be repaired (applied to each column in
        ``temp_columns``).
    floor : float
        Slope used when no valid neighbour slope exists.

    Returns
    -------
    pd.DataFrame
        Copy of ``df`` with repaired values.
    """
    out = df.copy()
    index = NodeIndex.from_frame(out)
    from_nodes = out["from_node"].tolist()
    to_nodes = out["to_node"].tolist()

    if slope_invalid is not None and np.any(slope_invalid):
        slopes = out["slope"].to_numpy(dtype=float)
        repaired = slopes.copy()
        n_floor = 0
        for pos in np.flatnonzero(slope_invalid):
            nbrs = index.neighbors(from_nodes[pos], to_nodes[pos])
            repaired[pos] = _mean_positive(slopes[nbrs], floor)
            if not np.any(slopes[nbrs] > 0):
                n_floor += 1
        out["slope"] = repaired
        logger.info(
            "Repaired %d slopes (%d fell back to floor %g)",
            int(np.sum(slope_invalid)),
            n_floor,
            floor,
        )

    if temp_invalid is not None and np.any(temp_invalid):
        for col in temp_columns:
            if col not in out.columns:
                continue
            temps = out[col].to_numpy(dtype=float)
            repaired = temps.copy()
            for pos in np.flatnonzero(temp_invalid):
                nbrs = index.neighbors(from_nodes[pos], to_nodes[pos])
                repaired[pos] = _nanmean(temps[nbrs])
            out[col] = repaired
        logger.info("Repaired temperatures for %d reaches", int(np.sum(temp_invalid)))

    return out
