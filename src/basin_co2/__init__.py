# -*- coding: utf-8 -*-
"""
Basin CO2
=========

Reach-scale CO2 gas exchange and basin flux accounting for river and
lake/reservoir networks.

Modules:
    reach: Reach table columns and the Waterbody type
    hydraulics: Hydraulic geometry (width, depth, velocity, residence time)
    gas_exchange: Henry's law, k600/kCO2, benthic exchange, evasion flux
    gap_filling: One-hop topological repair of slopes and temperatures
    routing: Basin graph, hydrography sources and boundary export records
    aggregation: Reach, basin and network flux totals and uncertainty
    calibration: Calibrated parameter records
    validation: Reach table checks
    pipeline: Basin and network runs
    config: ModelConfig and default basin lists

Example Usage:
    from src.basin_co2 import ModelConfig, BasinGraph, run_network, summarize_network

    config = ModelConfig(data_root="data", max_workers=4)
    graph = BasinGraph.from_lookup(lookup)
    results = run_network(graph, load_reaches, config, lookup,
                          ParquetHydrography(config), solver)
    totals = summarize_network(results, config).totals
"""

from .aggregation import (
    basin_lake_bin_summary,
    basin_properties,
    basin_summary,
    calibration_uncertainty,
    combine_basin_emissions,
    lake_area_bin,
    merge_composite_basins,
    network_totals,
    reach_flux,
)
from .calibration import CalibratedParameters, combine_calibration_parameters
from .config import ModelConfig
from .gap_filling import fill_network_gaps, repair_slope, repair_temperature
from .gas_exchange import apply_gas_exchange, henry_constant, k600, kco2
from .hydraulics import apply_hydraulic_geometry, depth, residence_time, velocity, width
from .pipeline import (
    BasinResult,
    NetworkSummary,
    prepare_reaches,
    run_basin,
    run_network,
    summarize_network,
)
from .reach import ReachTableError, Waterbody, normalize_reach_table
from .routing import (
    BasinCycleError,
    BasinGraph,
    ExportRecord,
    FrameHydrography,
    ParquetHydrography,
    get_exported,
)
from .validation import CheckResult, Severity, run_checks, validate_reach_table

__all__ = [
    # Configuration
    "ModelConfig",
    # Reach table
    "ReachTableError",
    "Waterbody",
    "normalize_reach_table",
    # Physics
    "width",
    "depth",
    "velocity",
    "residence_time",
    "apply_hydraulic_geometry",
    "henry_constant",
    "k600",
    "kco2",
    "apply_gas_exchange",
    # Gap filling
    "repair_slope",
    "repair_temperature",
    "fill_network_gaps",
    # Routing
    "BasinCycleError",
    "BasinGraph",
    "ExportRecord",
    "FrameHydrography",
    "ParquetHydrography",
    "get_exported",
    # Aggregation
    "reach_flux",
    "basin_summary",
    "basin_properties",
    "lake_area_bin",
    "basin_lake_bin_summary",
    "calibration_uncertainty",
    "combine_basin_emissions",
    "merge_composite_basins",
    "network_totals",
    # Calibration
    "CalibratedParameters",
    "combine_calibration_parameters",
    # Validation
    "CheckResult",
    "Severity",
    "run_checks",
    "validate_reach_table",
    # Pipeline
    "BasinResult",
    "prepare_reaches",
    "run_basin",
    "run_network",
    "NetworkSummary",
    "summarize_network",
]
