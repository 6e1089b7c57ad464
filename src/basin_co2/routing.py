"""
Cross-basin routing.

Each basin is modelled on its own; this module finds the reaches that carry a
basin's outflow across its boundary into the next basin and records their
discharge and CO2 state (``ExportRecord``) so the downstream basin's run can
import them. The router only identifies exporting reaches, it never changes
their values.

Basin runs depend on each other through these exports, so ``BasinGraph``
keeps the basin adjacency as a directed graph and hands out a topological
execution order.
"""

from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Set

import duckdb
import networkx as nx
import numpy as np
import pandas as pd

from ._logging import log
from .config import ModelConfig
from .reach import ReachTableError

logger = logging.getLogger(__name__)

HYDROGRAPHY_COLUMNS: tuple[str, ...] = (
    "from_node",
    "to_node",
    "Q_m3_s",
    "stream_order",
    "hydro_seq",
    "flow_dir",
)

EXPORT_COLUMNS: tuple[str, ...] = (
    "downstream_basin",
    "exported_co2_ppm",
    "exported_to_node",
    "exported_q_cms",
)


class BasinCycleError(Exception):
    """Raised when the basin lookup table describes a cycle."""

    def __init__(self, cycle: Sequence):
        self.cycle = list(cycle)
        super().__init__(f"Basin lookup contains a cycle: {self.cycle}")


def basin_code(value) -> Optional[str]:
    """Normalise a basin identifier; integers are zero-padded to four digits."""
    if value is None:
        return None
    if isinstance(value, float):
        if math.isnan(value):
            return None
        if value.is_integer():
            value = int(value)
    if isinstance(value, (int, np.integer)):
        return f"{int(value):04d}"
    code = str(value).strip()
    return code or None


# =============================================================================
# Export records
# =============================================================================


@dataclass(frozen=True)
class ExportRecord:
    """Flow and CO2 state crossing from ``source_basin`` into ``downstream_basin``."""

    downstream_basin: Optional[str]
    exported_co2_ppm: float
    exported_to_node: float
    exported_q_cms: float
    source_basin: Optional[str] = None

    @classmethod
    def missing(cls, source_basin: Optional[str] = None) -> "ExportRecord":
        """Record for a basin with no downstream target (terminal outlet)."""
        return cls(None, np.nan, np.nan, np.nan, source_basin)

    @property
    def is_terminal(self) -> bool:
        return self.downstream_basin is None

    @property
    def is_proxy(self) -> bool:
        """True for the max-discharge fallback used when no boundary reach matched."""
        return self.downstream_basin is not None and pd.isna(self.exported_to_node)


def exports_to_frame(records: Iterable[ExportRecord]) -> pd.DataFrame:
    """Export records as a table (``source_basin`` plus ``EXPORT_COLUMNS``)."""
    rows = [asdict(r) for r in records]
    columns = ["source_basin", *EXPORT_COLUMNS]
    if not rows:
        return pd.DataFrame(columns=columns)
    return pd.DataFrame(rows)[columns]


def imports_for(basin: str, records: Iterable[ExportRecord]) -> List[ExportRecord]:
    """Export records whose downstream target is ``basin``."""
    return [r for r in records if r.downstream_basin == basin]


# =============================================================================
# Hydrography
# =============================================================================


def build_flowing_filter_sql() -> str:
    """WHERE clause (without keyword) keeping flowing, non-divergent flowlines."""
    conditions = [
        "Q_m3_s > 0",
        "stream_order > 0",
        "hydro_seq IS NOT NULL",
        "flow_dir = 1",
    ]
    return " AND ".join(conditions)


def filter_flowing_reaches(df: pd.DataFrame) -> pd.DataFrame:
    """Keep flowlines with positive flow, defined order and a single flow direction."""
    keep = (
        (df["Q_m3_s"] > 0)
        & (df["stream_order"] > 0)
        & df["hydro_seq"].notna()
        & (df["flow_dir"] == 1)
    )
    return df.loc[keep].reset_index(drop=True)


class FrameHydrography:
    """
    Hydrography served from in-memory tables keyed by basin code.

    Parameters
    ----------
    tables : dict
        ``{huc4: DataFrame}`` with ``HYDROGRAPHY_COLUMNS``.
    """

    def __init__(self, tables: Dict[str, pd.DataFrame]):
        self.tables = {basin_code(k): v for k, v in tables.items()}

    def load(self, huc4: str) -> pd.DataFrame:
        if huc4 not in self.tables:
            raise FileNotFoundError(f"No hydrography for basin {huc4}")
        return filter_flowing_reaches(self.tables[huc4])


class ParquetHydrography:
    """
    Hydrography read from per-basin parquet files through DuckDB.

    Layout: ``<data_root>/HUC2_<hh>/flowlines_<huc4>.parquet``. Basins listed in
    ``config.alternate_hydrography_basins`` are read from the repaired files at
    ``<data_root>/HUC2_<hh>/indiana/indiana_fixed_<huc4>.parquet``, whose node
    identifiers are rounded to whole numbers.
    """

    def __init__(self, config: ModelConfig):
        self.config = config

    def path_for(self, huc4: str) -> Path:
        huc2_dir = self.config.data_root / f"HUC2_{huc4[:2]}"
        if huc4 in self.config.alternate_hydrography_basins:
            return huc2_dir / "indiana" / f"indiana_fixed_{huc4}.parquet"
        return huc2_dir / f"flowlines_{huc4}.parquet"

    def load(self, huc4: str) -> pd.DataFrame:
        path = self.path_for(huc4)
        if not path.exists():
            raise FileNotFoundError(f"Hydrography not found for {huc4}: {path}")

        if huc4 in self.config.alternate_hydrography_basins:
            node_cols = "ROUND(from_node) AS from_node, ROUND(to_node) AS to_node"
        else:
            node_cols = "from_node, to_node"
        source = str(path).replace("'", "''")

        con = duckdb.connect()
        try:
            df = con.execute(
                f"""
                SELECT {node_cols}, Q_m3_s, stream_order, hydro_seq, flow_dir
                FROM read_parquet('{source}')
                WHERE {build_flowing_filter_sql()}
                """
            ).fetchdf()
        finally:
            con.close()
        logger.debug("Loaded %d flowing reaches for %s from %s", len(df), huc4, path)
        return df


# =============================================================================
# Export resolution
# =============================================================================


def downstream_basins(lookup: pd.DataFrame, huc4: str) -> List[str]:
    """Downstream basin codes recorded for ``huc4`` in the lookup table."""
    rows = lookup[lookup["HUC4"].map(basin_code) == huc4]
    out = []
    for value in rows["toBasin"]:
        code = basin_code(value)
        if code is not None and code not in out:
            out.append(code)
    return out


def get_exported(
    model: pd.DataFrame,
    huc4: str,
    lookup: pd.DataFrame,
    hydrography,
) -> List[ExportRecord]:
    """
    Resolve the reaches exporting flow and CO2 from ``huc4`` to its downstream basins.

    For every downstream basin, each model reach whose ``to_node`` is the
    ``from_node`` of a flowing reach in that basin produces one record carrying
    its ``CO2_ppm`` and ``Q_m3_s``. If no reach matches (typically an outlet
    into a large lake without a modelled connecting reach) a single record with
    the CO2 of the basin's largest-discharge reach and missing node/flow is
    emitted. A basin without downstream target yields one all-missing record.

    Parameters
    ----------
    model : pd.DataFrame
        Basin model table with ``to_node``, ``Q_m3_s`` and ``CO2_ppm``.
    huc4 : str
        Basin being exported from.
    lookup : pd.DataFrame
        Basin lookup table with ``HUC4`` and ``toBasin`` columns.
    hydrography : object
        Source with a ``load(huc4) -> DataFrame`` method returning the
        filtered flowlines of a basin.

    Returns
    -------
    list of ExportRecord
    """
    missing = [c for c in ("to_node", "Q_m3_s", "CO2_ppm") if c not in model.columns]
    if missing:
        raise ReachTableError(f"Model table for {huc4} is missing columns: {missing}")

    targets = downstream_basins(lookup, huc4)
    if not targets:
        log(f"{huc4}: terminal basin, nothing exported")
        return [ExportRecord.missing(huc4)]

    records: List[ExportRecord] = []
    for target in targets:
        nhd = hydrography.load(target)
        inflow_nodes = set(nhd["from_node"].dropna())
        matched = model[model["to_node"].isin(inflow_nodes)]

        if matched.empty:
            proxy_co2 = _max_discharge_co2(model)
            logger.warning(
                "%s -> %s: no boundary reach matched, using max-discharge reach as proxy",
                huc4,
                target,
            )
            records.append(ExportRecord(target, proxy_co2, np.nan, np.nan, huc4))
            continue

        for row in matched.itertuples(index=False):
            records.append(
                ExportRecord(
                    target,
                    float(row.CO2_ppm),
                    row.to_node,
                    float(row.Q_m3_s),
                    huc4,
                )
            )
        log(f"{huc4} -> {target}: {len(matched):,} exporting reaches")

    return records


def _max_discharge_co2(model: pd.DataFrame) -> float:
    q = model["Q_m3_s"]
    if q.notna().sum() == 0:
        return np.nan
    return float(model.loc[q.idxmax(), "CO2_ppm"])


def flag_boundary_outflow(model: pd.DataFrame, records: Iterable[ExportRecord]) -> pd.DataFrame:
    """Add ``is_boundary_outflow``: True for reaches that produced an export record."""
    out = model.copy()
    nodes = {
        r.exported_to_node
        for r in records
        if not r.is_terminal and not pd.isna(r.exported_to_node)
    }
    out["is_boundary_outflow"] = out["to_node"].isin(nodes)
    return out


# =============================================================================
# Basin dependency graph
# =============================================================================


class BasinGraph:
    """
    Directed basin adjacency (edges point downstream).

    Basins are stored once in an arena (``basins``) and referenced by index in
    the underlying ``networkx.DiGraph``.
    """

    def __init__(self, basins: Iterable[str] = ()):
        self.basins: List[str] = []
        self._index: Dict[str, int] = {}
        self.graph = nx.DiGraph()
        for code in basins:
            self.add_basin(code)

    def __contains__(self, code) -> bool:
        return basin_code(code) in self._index

    def __len__(self) -> int:
        return len(self.basins)

    def add_basin(self, code) -> int:
        code = basin_code(code)
        if code is None:
            raise ValueError("Basin code must not be empty")
        if code not in self._index:
            self._index[code] = len(self.basins)
            self.basins.append(code)
            self.graph.add_node(self._index[code])
        return self._index[code]

    def add_edge(self, upstream, downstream) -> None:
        self.graph.add_edge(self.add_basin(upstream), self.add_basin(downstream))

    @classmethod
    def from_lookup(
        cls,
        lookup: pd.DataFrame,
        basin_col: str = "HUC4",
        downstream_col: str = "toBasin",
    ) -> "BasinGraph":
        """Build the graph from a lookup table; missing downstream codes mark terminal basins."""
        graph = cls()
        for up, down in zip(lookup[basin_col], lookup[downstream_col]):
            graph.add_basin(up)
            if basin_code(down) is not None:
                graph.add_edge(up, down)
        graph.validate()
        return graph

    def index(self, code) -> int:
        return self._index[basin_code(code)]

    def downstream(self, code) -> List[str]:
        return [self.basins[i] for i in self.graph.successors(self.index(code))]

    def upstream(self, code) -> List[str]:
        return [self.basins[i] for i in self.graph.predecessors(self.index(code))]

    def all_upstream(self, code) -> Set[str]:
        """Every basin contributing flow to ``code``, directly or indirectly."""
        return {self.basins[i] for i in nx.ancestors(self.graph, self.index(code))}

    def terminal_basins(self) -> List[str]:
        return [self.basins[i] for i in self.graph.nodes if self.graph.out_degree(i) == 0]

    def validate(self) -> None:
        """Raise ``BasinCycleError`` unless the graph is acyclic."""
        try:
            cycle = nx.find_cycle(self.graph)
        except nx.NetworkXNoCycle:
            return
        raise BasinCycleError([self.basins[u] for u, _ in cycle])

    def topological_order(self) -> List[str]:
        """Basins ordered so every basin follows all of its upstream contributors."""
        self.validate()
        return [self.basins[i] for i in nx.lexicographical_topological_sort(self.graph)]

    def generations(self) -> List[List[str]]:
        """
        Topological generations.

        Basins within one generation have no dependency on each other and may
        run concurrently; generation ``k`` only depends on generations ``< k``.
        """
        self.validate()
        return [
            sorted(self.basins[i] for i in gen)
            for gen in nx.topological_generations(self.graph)
        ]
