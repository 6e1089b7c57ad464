"""
Flux aggregation and uncertainty propagation.

Turns per-reach areal CO2 fluxes into reach, basin and network totals. Every
statistic excludes missing values instead of propagating them, and an empty
defined subset gives a missing result rather than zero. Great Lakes basins
(``ModelConfig.excluded_basins``) short-circuit to all-missing rows.

Units:
    FCO2_gC_m2_yr   areal flux from the transport solver [g-C/m2/yr]
    FCO2_gC_yr      reach flux [g-C/yr]
    *_TgC_yr        basin totals [Tg-C/yr] (1 Tg = 1e12 g)
    *_skm           surface areas [km2]
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, Mapping, Optional, Sequence

import numpy as np
import pandas as pd

from .calibration import calibration_cost
from .config import ModelConfig
from .gas_exchange import CARBON_G_PER_MOL, SECONDS_PER_YEAR
from .hydraulics import surface_area
from .reach import Waterbody, is_lake, is_river

logger = logging.getLogger(__name__)

G_TO_TG = 1e-12
M2_TO_KM2 = 1e-6

SUMMARY_COLUMNS: tuple[str, ...] = (
    "huc4",
    "waterbody",
    "sumFCO2_TgC_yr",
    "sumFCO2_conus_TgC_yr",
    "sumSurfaceArea_skm",
    "sumSurfaceArea_conus_skm",
    "n",
)

PROPERTY_COLUMNS: tuple[str, ...] = (
    "huc4",
    "mean_k600_m_s",
    "median_k600_m_s",
    "mean_kco2_m_s",
    "median_kco2_m_s",
    "mean_slope",
    "median_slope",
)

LAKE_BIN_COLUMNS: tuple[str, ...] = (
    "huc4",
    "lakeBin",
    "n_reaches",
    "binArea_skm",
    "binFlux_gC_m2_yr",
    "binFlux_TgC_yr",
)

# Upper bin edges [km2]; areas above the last edge fall in "100+"
LAKE_BIN_EDGES: tuple[float, ...] = (0.001, 0.01, 0.1, 1, 10, 100)
LAKE_BIN_LABELS: tuple[str, ...] = ("0.001", "0.01", "0.1", "1", "10", "100", "100+")


def _missing_row(columns: Sequence[str], huc4: str) -> pd.DataFrame:
    row = {c: np.nan for c in columns}
    row["huc4"] = huc4
    return pd.DataFrame([row], columns=list(columns))


def _waterbody_labels(df: pd.DataFrame) -> pd.Series:
    return df["waterbody"].map(lambda w: w.value if isinstance(w, Waterbody) else None)


# =============================================================================
# Reach fluxes
# =============================================================================


def apply_shoreline_fix(
    model: pd.DataFrame,
    huc4: str,
    config: ModelConfig,
    fix_table: Optional[pd.DataFrame] = None,
) -> pd.DataFrame:
    """
    Zero out artificial shoreline rivers.

    For basins in ``config.shoreline_fix_basins`` the fix table
    (``reach_id``, ``GL_pass``) is joined to the model and reaches with
    ``GL_pass == 0`` get zero flux, width and length. Other basins are
    returned unchanged.
    """
    if huc4 not in config.shoreline_fix_basins:
        return model
    if fix_table is None:
        fix_table = pd.read_csv(config.fix_path(huc4))

    fix = fix_table[["reach_id", "GL_pass"]].drop_duplicates("reach_id")
    out = model.drop(columns=["GL_pass"], errors="ignore").merge(fix, on="reach_id", how="left")
    flagged = (pd.to_numeric(out["GL_pass"], errors="coerce") == 0).to_numpy()

    out.loc[flagged, "FCO2_gC_m2_yr"] = 0.0
    out.loc[flagged, "W_m"] = 0.0
    out.loc[flagged, "length_km"] = 0.0
    logger.info("%s: zeroed %d shoreline reaches", huc4, int(flagged.sum()))
    return out


def reach_flux(model: pd.DataFrame) -> pd.DataFrame:
    """
    Add ``SA_m2`` and ``FCO2_gC_yr`` (reach CO2 flux [g-C/yr]).

    Rivers: ``FCO2_gC_m2_yr * W_m * length_km * 1000``; lakes/reservoirs:
    ``FCO2_gC_m2_yr * lake_area_m2``. Unknown waterbodies have no surface area
    and no flux.
    """
    out = model.copy()
    out["SA_m2"] = surface_area(out)
    out["FCO2_gC_yr"] = out["FCO2_gC_m2_yr"].to_numpy(dtype=float) * out["SA_m2"].to_numpy(dtype=float)
    return out


def _with_reach_flux(model: pd.DataFrame) -> pd.DataFrame:
    if "FCO2_gC_yr" in model.columns and "SA_m2" in model.columns:
        return model
    return reach_flux(model)


# =============================================================================
# Basin summaries
# =============================================================================


def basin_summary(model: pd.DataFrame, huc4: str, config: ModelConfig) -> pd.DataFrame:
    """
    Basin CO2 flux and surface area by waterbody.

    One row per waterbody variant present, with totals over all reaches and
    over domestic reaches only (``conus == 1``) plus the reach count. A basin
    without any recognised reach gets a single all-missing row.
    """
    if config.is_excluded(huc4):
        return _missing_row(SUMMARY_COLUMNS, huc4)

    df = _with_reach_flux(model)
    conus = df["conus"].fillna(0).to_numpy(dtype=float)
    work = pd.DataFrame(
        {
            "waterbody": _waterbody_labels(df),
            "flux": df["FCO2_gC_yr"].to_numpy(dtype=float),
            "flux_conus": df["FCO2_gC_yr"].to_numpy(dtype=float) * conus,
            "sa": df["SA_m2"].to_numpy(dtype=float),
            "sa_conus": df["SA_m2"].to_numpy(dtype=float) * conus,
        }
    )

    if work["waterbody"].isna().all():
        return _missing_row(SUMMARY_COLUMNS, huc4)

    grouped = work.groupby("waterbody", sort=True)
    out = pd.DataFrame(
        {
            "sumFCO2_TgC_yr": grouped["flux"].sum(min_count=1) * G_TO_TG,
            "sumFCO2_conus_TgC_yr": grouped["flux_conus"].sum(min_count=1) * G_TO_TG,
            "sumSurfaceArea_skm": grouped["sa"].sum(min_count=1) * M2_TO_KM2,
            "sumSurfaceArea_conus_skm": grouped["sa_conus"].sum(min_count=1) * M2_TO_KM2,
            "n": grouped.size(),
        }
    ).reset_index()
    out.insert(0, "huc4", huc4)
    return out[list(SUMMARY_COLUMNS)]


def basin_properties(model: pd.DataFrame, huc4: str, config: ModelConfig) -> pd.DataFrame:
    """Mean and median k600, kCO2 and slope over a basin's reaches."""
    if config.is_excluded(huc4):
        return _missing_row(PROPERTY_COLUMNS, huc4)

    row = {"huc4": huc4}
    for col, name in (("k600_m_s", "k600_m_s"), ("kco2_m_s", "kco2_m_s"), ("slope", "slope")):
        values = model[col] if col in model.columns else pd.Series(dtype=float)
        row[f"mean_{name}"] = values.mean()
        row[f"median_{name}"] = values.median()
    return pd.DataFrame([row], columns=list(PROPERTY_COLUMNS))


def lake_area_bin(area_km2: float) -> Optional[str]:
    """
    Lake area bin label for a surface area [km2].

    Bins are labelled by their upper edge; an area equal to an edge belongs
    to the lower bin. NaN and negative areas have no bin.
    """
    if area_km2 is None or np.isnan(area_km2) or area_km2 < 0:
        return None
    return LAKE_BIN_LABELS[int(np.searchsorted(LAKE_BIN_EDGES, area_km2, side="left"))]


def basin_lake_bin_summary(model: pd.DataFrame, huc4: str, config: ModelConfig) -> pd.DataFrame:
    """
    Lake/reservoir counts, areas and fluxes by surface-area bin.

    One row per non-empty bin, in bin order. ``binFlux_gC_m2_yr`` is the
    area-weighted mean areal flux of the bin and ``binFlux_TgC_yr`` that flux
    times the bin area.
    """
    if config.is_excluded(huc4):
        return _missing_row(LAKE_BIN_COLUMNS, huc4)

    area_m2 = model["lake_area_m2"].to_numpy(dtype=float)
    lakes = model.loc[is_lake(model) & (area_m2 > 0)]
    if lakes.empty:
        return pd.DataFrame(columns=list(LAKE_BIN_COLUMNS))

    area_km2 = lakes["lake_area_m2"].to_numpy(dtype=float) * M2_TO_KM2
    flux = lakes["FCO2_gC_m2_yr"].to_numpy(dtype=float)
    bins = np.searchsorted(LAKE_BIN_EDGES, area_km2, side="left")

    rows = []
    for b in np.unique(bins):
        in_bin = bins == b
        bin_area = area_km2[in_bin].sum()
        defined = in_bin & ~np.isnan(flux)
        flux_area = area_km2[defined].sum()
        if flux_area > 0:
            weighted = float((flux[defined] * area_km2[defined]).sum() / flux_area)
        else:
            weighted = np.nan
        rows.append(
            {
                "huc4": huc4,
                "lakeBin": LAKE_BIN_LABELS[b],
                "n_reaches": int(in_bin.sum()),
                "binArea_skm": float(bin_area),
                "binFlux_gC_m2_yr": weighted,
                "binFlux_TgC_yr": weighted * bin_area / M2_TO_KM2 * G_TO_TG,
            }
        )
    return pd.DataFrame(rows, columns=list(LAKE_BIN_COLUMNS))


# =============================================================================
# Calibration uncertainty
# =============================================================================


def flux_uncertainty(
    kco2_m_s: float,
    henry: float,
    fitness: float,
    surface_area_m2: float,
) -> float:
    """
    Flux uncertainty [Tg-C/yr] from a calibration fitness score.

    The calibration cost ``(1/F)/2`` [ppm] is treated as a CO2 error and
    converted to an areal flux error with the basin's median transfer velocity
    and Henry constant, then scaled by total surface area. Returns NaN for a
    non-positive or undefined fitness.
    """
    cost = calibration_cost(fitness)
    if np.isnan(cost):
        return np.nan
    sigma = (
        kco2_m_s
        * ((cost * henry) / 1e6)
        * (1 / 0.001)
        * CARBON_G_PER_MOL
        * SECONDS_PER_YEAR
    )  # [g-C/m2/yr]
    return float(sigma * surface_area_m2 * G_TO_TG)


def calibration_uncertainty(model: pd.DataFrame, huc4: str, fitness: float) -> pd.DataFrame:
    """Calibration uncertainty row (``huc4``, ``sigma`` [Tg-C/yr]) for a basin."""
    df = model if "SA_m2" in model.columns else model.assign(SA_m2=surface_area(model))
    total_sa = df["SA_m2"].sum(min_count=1)
    sigma = flux_uncertainty(
        df["kco2_m_s"].median(),
        df["henry"].median(),
        fitness,
        total_sa,
    )
    return pd.DataFrame([{"huc4": huc4, "sigma": sigma}])


# =============================================================================
# Basin and network roll-ups
# =============================================================================


def combine_basin_emissions(summaries: pd.DataFrame) -> pd.DataFrame:
    """
    Collapse per-waterbody summaries into one row per basin.

    Adds ``lakeFCO2_TgC_yr`` (lake/reservoir share), left missing when the
    basin total is zero or missing.
    """
    grouped = summaries.groupby("huc4", sort=True)
    out = pd.DataFrame(
        {
            "sumFCO2_TgC_yr": grouped["sumFCO2_TgC_yr"].sum(min_count=1),
            "sumFCO2_conus_TgC_yr": grouped["sumFCO2_conus_TgC_yr"].sum(min_count=1),
            "sumSurfaceArea_skm": grouped["sumSurfaceArea_skm"].sum(min_count=1),
        }
    )
    lakes = summaries[summaries["waterbody"] == Waterbody.LAKE_RESERVOIR.value]
    lake_flux = lakes.groupby("huc4")["sumFCO2_TgC_yr"].sum(min_count=1)
    out["lakeFCO2_TgC_yr"] = lake_flux.reindex(out.index)
    no_total = out["sumFCO2_TgC_yr"].isna() | (out["sumFCO2_TgC_yr"] == 0)
    out.loc[no_total, "lakeFCO2_TgC_yr"] = np.nan
    return out.reset_index()


def merge_composite_basins(
    df: pd.DataFrame,
    composites: Mapping[str, Sequence[str]],
    value_columns: Optional[Iterable[str]] = None,
    basin_col: str = "huc4",
) -> pd.DataFrame:
    """
    Sum the rows of composite sub-basins into their parent code.

    ``{"1710": ("1710a", "1710b")}`` replaces the ``1710a`` and ``1710b`` rows
    with one ``1710`` row holding the summed ``value_columns`` (all numeric
    columns by default). Columns that are not summed are left missing on the
    merged row.
    """
    if value_columns is None:
        value_columns = [
            c for c in df.select_dtypes(include="number").columns if c != basin_col
        ]
    value_columns = list(value_columns)

    out = df
    for parent, children in composites.items():
        members = out[out[basin_col].isin(children)]
        if members.empty:
            continue
        merged = {c: np.nan for c in out.columns}
        merged[basin_col] = parent
        for col in value_columns:
            merged[col] = members[col].sum(min_count=1)
        out = pd.concat(
            [out[~out[basin_col].isin(children)], pd.DataFrame([merged])],
            ignore_index=True,
        )
    return out


def network_totals(
    summaries: pd.DataFrame,
    uncertainties: Optional[pd.DataFrame] = None,
) -> Dict[str, float]:
    """Network-wide flux, area and calibration uncertainty totals."""
    totals = {
        "totalFlux_TgC_yr": summaries["sumFCO2_TgC_yr"].sum(min_count=1),
        "totalFlux_conus_TgC_yr": summaries["sumFCO2_conus_TgC_yr"].sum(min_count=1),
        "totalSurfaceArea_skm": summaries["sumSurfaceArea_skm"].sum(min_count=1),
        "n_basins": int(summaries["huc4"].nunique()),
    }
    if uncertainties is not None and len(uncertainties) > 0:
        totals["calibration_uncertainty_TgC_yr"] = uncertainties["sigma"].sum(min_count=1)
    else:
        totals["calibration_uncertainty_TgC_yr"] = np.nan
    return {k: (float(v) if k != "n_basins" else v) for k, v in totals.items()}


def lumped_river_k600(model: pd.DataFrame) -> float:
    """
    Basin-lumped river k600 [m/s].

    Mean k600 per stream order, weighted by each order's river surface area.
    """
    rivers = model.loc[is_river(model)]
    if rivers.empty:
        return np.nan
    sa = rivers["length_km"] * rivers["W_m"] * 1000
    by_order = pd.DataFrame(
        {"stream_order": rivers["stream_order"], "k600": rivers["k600_m_s"], "sa": sa}
    ).groupby("stream_order")
    k = by_order["k600"].mean()
    w = by_order["sa"].sum(min_count=1)
    defined = k.notna() & w.notna()
    if not defined.any() or w[defined].sum() == 0:
        return np.nan
    return float(np.average(k[defined], weights=w[defined]))
