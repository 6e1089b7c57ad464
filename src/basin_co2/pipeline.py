"""
Basin and network runs.

A basin run prepares the reach table (gap filling, hydraulics, gas exchange),
hands it to the CO2 transport solver together with the boundary inflows from
upstream basins, then aggregates fluxes and resolves what the basin exports
downstream. A network run executes basins in topological generations so every
basin sees the exports of all of its contributors.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional

import numpy as np
import pandas as pd

from ._logging import log
from .aggregation import (
    apply_shoreline_fix,
    basin_lake_bin_summary,
    basin_properties,
    basin_summary,
    calibration_uncertainty,
    combine_basin_emissions,
    merge_composite_basins,
    network_totals,
    reach_flux,
)
from .calibration import CalibratedParameters
from .config import ModelConfig
from .gap_filling import fill_network_gaps
from .gas_exchange import apply_gas_exchange, co2_evasion_flux
from .hydraulics import apply_hydraulic_geometry
from .reach import ReachTableError, is_river, normalize_reach_table
from .routing import BasinGraph, ExportRecord, flag_boundary_outflow, get_exported, imports_for
from .validation import validate_reach_table

logger = logging.getLogger(__name__)

# (model, boundary inflows) -> model with CO2_ppm (and optionally FCO2_gC_m2_yr)
Solver = Callable[[pd.DataFrame, List[ExportRecord]], pd.DataFrame]

TEMPERATURE_COLUMNS: tuple[str, ...] = ("temp_water_c", "temp_air_c")


@dataclass
class BasinResult:
    """Outputs of one basin run."""

    huc4: str
    model: pd.DataFrame
    summary: pd.DataFrame
    properties: pd.DataFrame
    lake_bins: pd.DataFrame
    uncertainty: pd.DataFrame
    exports: List[ExportRecord] = field(default_factory=list)

    @property
    def exported_q_cms(self) -> float:
        """Total discharge leaving the basin through matched boundary reaches."""
        q = [r.exported_q_cms for r in self.exports if not pd.isna(r.exported_q_cms)]
        return float(sum(q))


def _finite(value: float) -> Optional[float]:
    return value if value is not None and np.isfinite(value) else None


def prepare_reaches(
    reaches: pd.DataFrame,
    config: ModelConfig,
    calibration: Optional[CalibratedParameters] = None,
    validate: bool = True,
) -> pd.DataFrame:
    """
    Turn a raw reach table into the solver's input table.

    Parameters
    ----------
    reaches : pd.DataFrame
        Reach attribute table.
    config : ModelConfig
        Run configuration (slope floor).
    calibration : CalibratedParameters, optional
        Benthic exchange multipliers applied to ``kbz_s``.
    validate : bool
        Run the reach table checks first.

    Returns
    -------
    pd.DataFrame
        Normalised table with repaired slopes/temperatures and all hydraulic
        and gas exchange columns.

    Raises
    ------
    ReachTableError
        On missing required columns or a failed ERROR check.
    """
    if validate:
        validate_reach_table(reaches)

    df = normalize_reach_table(reaches)

    slope = df["slope"].to_numpy(dtype=float)
    slope_invalid = is_river(df) & ~(slope > 0)
    df = fill_network_gaps(df, slope_invalid=slope_invalid, floor=config.slope_floor)

    # each temperature column is repaired only where that column is missing
    for col in TEMPERATURE_COLUMNS:
        if col not in df.columns:
            continue
        df = fill_network_gaps(
            df, temp_invalid=df[col].isna().to_numpy(), temp_columns=(col,)
        )

    df = apply_hydraulic_geometry(df)
    cbz_riv = _finite(calibration.cbz_riv) if calibration is not None else None
    cbz_lake = _finite(calibration.cbz_lake) if calibration is not None else None
    return apply_gas_exchange(df, cbz_riv=cbz_riv, cbz_lake=cbz_lake)


def run_basin(
    huc4: str,
    reaches: pd.DataFrame,
    config: ModelConfig,
    lookup: pd.DataFrame,
    hydrography,
    solver: Solver,
    calibration: Optional[CalibratedParameters] = None,
    imports: Optional[List[ExportRecord]] = None,
) -> BasinResult:
    """
    Run one basin end to end.

    Parameters
    ----------
    huc4 : str
        Basin code.
    reaches : pd.DataFrame
        Raw reach table of the basin.
    config : ModelConfig
        Run configuration.
    lookup : pd.DataFrame
        Basin lookup table (``HUC4``, ``toBasin``).
    hydrography : object
        Flowline source with ``load(huc4)``.
    solver : callable
        ``(model, imports) -> DataFrame``; must add ``CO2_ppm``.
    calibration : CalibratedParameters, optional
        Calibrated multipliers and fitness for this basin.
    imports : list of ExportRecord, optional
        Boundary inflows from upstream basins.

    Returns
    -------
    BasinResult
    """
    imports = imports or []
    log(f"{huc4}: preparing {len(reaches):,} reaches ({len(imports)} boundary inflows)")
    model = prepare_reaches(reaches, config, calibration)

    model = solver(model, imports)
    if "CO2_ppm" not in model.columns:
        raise ReachTableError(f"Solver output for {huc4} has no CO2_ppm column")
    if "FCO2_gC_m2_yr" not in model.columns:
        model = model.assign(
            FCO2_gC_m2_yr=co2_evasion_flux(
                model["CO2_ppm"].to_numpy(dtype=float),
                config.catm_ppm,
                model["henry"].to_numpy(dtype=float),
                model["kco2_m_s"].to_numpy(dtype=float),
            )
        )

    model = apply_shoreline_fix(model, huc4, config)
    model = reach_flux(model)

    exports = get_exported(model, huc4, lookup, hydrography)
    model = flag_boundary_outflow(model, exports)

    if config.is_excluded(huc4):
        uncertainty = pd.DataFrame([{"huc4": huc4, "sigma": np.nan}])
    else:
        fitness = calibration.fitness if calibration is not None else np.nan
        uncertainty = calibration_uncertainty(model, huc4, fitness)

    result = BasinResult(
        huc4=huc4,
        model=model,
        summary=basin_summary(model, huc4, config),
        properties=basin_properties(model, huc4, config),
        lake_bins=basin_lake_bin_summary(model, huc4, config),
        uncertainty=uncertainty,
        exports=exports,
    )
    log(f"{huc4}: done")
    return result


def run_network(
    graph: BasinGraph,
    load_reaches: Callable[[str], pd.DataFrame],
    config: ModelConfig,
    lookup: pd.DataFrame,
    hydrography,
    solver: Solver,
    calibrations: Optional[Mapping[str, CalibratedParameters]] = None,
) -> Dict[str, BasinResult]:
    """
    Run every basin of ``graph`` after all of its upstream contributors.

    Basins of one topological generation run on a thread pool of
    ``config.max_workers`` threads. A failing basin is logged and its
    exception re-raised once the generation has finished, so no downstream
    basin runs on partial inputs.

    Returns
    -------
    dict
        Basin code -> BasinResult.
    """
    calibrations = calibrations or {}
    results: Dict[str, BasinResult] = {}
    exports: List[ExportRecord] = []

    generations = graph.generations()
    log(f"Running {len(graph):,} basins in {len(generations)} generations")

    def _run(huc4: str) -> BasinResult:
        return run_basin(
            huc4,
            load_reaches(huc4),
            config,
            lookup,
            hydrography,
            solver,
            calibration=calibrations.get(huc4),
            imports=imports_for(huc4, exports),
        )

    for i, generation in enumerate(generations):
        log(f"Generation {i + 1}/{len(generations)}: {', '.join(generation)}")
        failures = []
        with ThreadPoolExecutor(max_workers=config.max_workers) as pool:
            futures = {pool.submit(_run, huc4): huc4 for huc4 in generation}
            for future in as_completed(futures):
                huc4 = futures[future]
                try:
                    results[huc4] = future.result()
                except Exception as exc:
                    logger.error("Basin %s failed: %s", huc4, exc)
                    failures.append(exc)
        if failures:
            raise failures[0]
        for huc4 in generation:
            exports.extend(results[huc4].exports)

    return results


@dataclass
class NetworkSummary:
    """Network roll-up of basin results, composite sub-basins merged."""

    emissions: pd.DataFrame
    uncertainty: pd.DataFrame
    totals: Dict[str, float]


def summarize_network(results: Mapping[str, BasinResult], config: ModelConfig) -> NetworkSummary:
    """
    Roll basin results up to one emissions row per basin plus network totals.

    Sub-basins listed in ``config.composite_basins`` are summed into their
    parent code before the totals are taken.
    """
    if not results:
        raise ValueError("No basin results to summarize")
    ordered = [results[huc4] for huc4 in sorted(results)]

    emissions = combine_basin_emissions(pd.concat([r.summary for r in ordered], ignore_index=True))
    emissions = merge_composite_basins(emissions, config.composite_basins)

    uncertainty = pd.concat([r.uncertainty for r in ordered], ignore_index=True)
    uncertainty = merge_composite_basins(
        uncertainty, config.composite_basins, value_columns=["sigma"]
    )

    totals = network_totals(emissions, uncertainty)
    log(
        f"Network: {totals['n_basins']:,} basins, "
        f"{totals['totalFlux_TgC_yr']:.4f} Tg-C/yr"
    )
    return NetworkSummary(emissions=emissions, uncertainty=uncertainty, totals=totals)
