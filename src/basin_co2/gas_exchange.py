"""
Gas exchange physics for rivers and lakes/reservoirs.

Henry's-law solubility, gas transfer velocity (k600 and its Schmidt-number
scaling to CO2), and the benthic exchange rate constant. All functions are
pure functions of scalar physical quantities; ``apply_gas_exchange`` maps
them over a whole reach table at once.

References:
    k600 (rivers):   Ulseth et al. 2019
    k600 (lakes):    Read et al. 2012; Raymond et al. 2013
    Schmidt number:  Raymond et al. 2012 / Wanninkhof 1991
    kbz (rivers):    Grant et al. 2018
    kbz (lakes):     Lorke & Peeters 2006
"""

from __future__ import annotations

from typing import Optional

import numpy as np
import pandas as pd

from .reach import Waterbody, is_lake, is_river

SECONDS_PER_DAY = 24 * 60 * 60
SECONDS_PER_YEAR = SECONDS_PER_DAY * 365
CARBON_G_PER_MOL = 12.01
GRAVITY = 9.8  # [m/s2]

# Henry's law fit constants
HENRY_A = 108.3865
HENRY_B = 0.01985076
HENRY_C = -6919.53
HENRY_D = -40.4515
HENRY_E = 669365

# Energy dissipation regime break [m2/s3]
ED_THRESHOLD = 0.02

# Lake k600 step function: upper area edges [km2] -> k600 [m/dy]
LAKE_AREA_CLASSES = (0.1, 1.0, 10.0)
LAKE_K600_VALUES = (0.54, 1.16, 1.32, 1.90)


def henry_constant(temp_c):
    """Henry's law constant for CO2 [mol/L/atm] at water temperature ``temp_c`` [C]."""
    temp_k = np.asarray(temp_c, dtype=float) + 273.15
    out = 10 ** (
        HENRY_A
        + HENRY_B * temp_k
        + HENRY_C / temp_k
        + HENRY_D * np.log10(temp_k)
        + HENRY_E / temp_k**2
    )
    return float(out) if out.ndim == 0 else out


def schmidt_number(temp_c):
    """Schmidt number of CO2 in fresh water (no bounds checking on ``temp_c``)."""
    t = np.asarray(temp_c, dtype=float)
    out = 1911 - 118.11 * t + 3.453 * t**2 - 0.0413 * t**3
    return float(out) if out.ndim == 0 else out


def river_k600(velocity: float, slope: float) -> float:
    """
    River k600 [m/dy] from energy dissipation ``eD = g * v * S``.

    Piecewise log-linear: ``eD <= 0.02`` uses the low-energy regression.
    """
    eD = GRAVITY * velocity * slope
    with np.errstate(divide="ignore", invalid="ignore"):
        if eD <= ED_THRESHOLD:
            return float(np.exp(3.10 + 0.35 * np.log(eD)))
        return float(np.exp(6.43 + 1.18 * np.log(eD)))


def lake_k600(lake_area_km2: float) -> float:
    """Lake/reservoir k600 [m/dy] by surface area class (edges go to the lower class)."""
    if np.isnan(lake_area_km2):
        return float("nan")
    for edge, value in zip(LAKE_AREA_CLASSES, LAKE_K600_VALUES):
        if lake_area_km2 <= edge:
            return value
    return LAKE_K600_VALUES[-1]


def k600(waterbody, velocity: float, slope: float, lake_area_km2: float) -> float:
    """Gas transfer velocity normalised to Sc=600 [m/dy]."""
    wb = Waterbody.parse(waterbody)
    if wb is Waterbody.RIVER:
        return river_k600(velocity, slope)
    if wb is Waterbody.LAKE_RESERVOIR:
        return lake_k600(lake_area_km2)
    return float("nan")


def schmidt_scaled_k(k600_value, schmidt):
    """Scale k600 to CO2 at Schmidt number ``schmidt`` [same units as k600]."""
    with np.errstate(invalid="ignore"):
        return k600_value / np.power(600 / np.asarray(schmidt, dtype=float), -0.5)


def kco2(k600_value, schmidt, depth):
    """Volumetric CO2 exchange rate constant [1/s] from k600 [m/dy] and depth [m]."""
    with np.errstate(divide="ignore", invalid="ignore"):
        return (schmidt_scaled_k(k600_value, schmidt) / depth) / SECONDS_PER_DAY


def benthic_exchange_rate(slope: float, depth: float, waterbody, temp_c: float) -> float:
    """
    Benthic exchange rate constant [1/s].

    Shear velocity ``U* = sqrt(g * depth * slope)``; rivers use
    ``0.3 U* Sc^(-2/3)``, lakes/reservoirs ``(1/9) Sc^(-1/2) U*``. Both are
    divided by depth.
    """
    wb = Waterbody.parse(waterbody)
    sc = schmidt_number(temp_c)
    with np.errstate(divide="ignore", invalid="ignore"):
        ustar = np.sqrt(GRAVITY * depth * slope)
        if wb is Waterbody.RIVER:
            kbz = 0.3 * ustar * sc ** (-2 / 3)
        elif wb is Waterbody.LAKE_RESERVOIR:
            kbz = (1 / 9) * sc ** (-1 / 2) * ustar
        else:
            return float("nan")
        return float(kbz / depth)


def co2_evasion_flux(co2_ppm, catm_ppm, henry, kco2_m_s):
    """
    Areal CO2 evasion flux [g-C/m2/yr].

    ``k * (pCO2 - pCO2_atm) * KH`` with ppm -> atm, mol/L -> mol/m3 and
    mol -> g-C conversions.
    """
    excess_mol_l = (np.asarray(co2_ppm, dtype=float) - catm_ppm) * henry / 1e6
    out = kco2_m_s * excess_mol_l * (1 / 0.001) * CARBON_G_PER_MOL * SECONDS_PER_YEAR
    return float(out) if np.ndim(out) == 0 else out


def apply_gas_exchange(
    df: pd.DataFrame,
    cbz_riv: Optional[float] = None,
    cbz_lake: Optional[float] = None,
) -> pd.DataFrame:
    """
    Add gas exchange columns to a reach table that already has hydraulics.

    Adds ``henry``, ``schmidt``, ``k600_m_dy``, ``k600_m_s``, ``kco2_m_s``
    (Schmidt-scaled transfer velocity), ``kco2_s`` (volumetric rate) and
    ``kbz_s``. When calibrated benthic multipliers are given, ``kbz_s`` is
    scaled by ``cbz_riv`` for rivers and ``cbz_lake`` for lakes/reservoirs.
    """
    out = df.copy()
    river = is_river(out)
    lake = is_lake(out)

    temp = out["temp_water_c"].to_numpy(dtype=float)
    V = out["V_m_s"].to_numpy(dtype=float)
    D = out["D_m"].to_numpy(dtype=float)
    slope = out["slope"].to_numpy(dtype=float)
    area_km2 = out["lake_area_m2"].to_numpy(dtype=float) * 1e-6

    sc = schmidt_number(temp)

    with np.errstate(divide="ignore", invalid="ignore"):
        eD = GRAVITY * V * slope
        k600_riv = np.where(
            eD <= ED_THRESHOLD,
            np.exp(3.10 + 0.35 * np.log(eD)),
            np.exp(6.43 + 1.18 * np.log(eD)),
        )
        k600_lake = np.select(
            [area_km2 <= edge for edge in LAKE_AREA_CLASSES],
            LAKE_K600_VALUES[:-1],
            default=LAKE_K600_VALUES[-1],
        )
        k600_lake = np.where(np.isnan(area_km2), np.nan, k600_lake)
        k600_m_dy = np.where(river, k600_riv, np.where(lake, k600_lake, np.nan))

        ustar = np.sqrt(GRAVITY * D * slope)
        kbz = np.where(
            river,
            0.3 * ustar * sc ** (-2 / 3),
            np.where(lake, (1 / 9) * sc ** (-1 / 2) * ustar, np.nan),
        )
        kbz = kbz / D
        if cbz_riv is not None:
            kbz = np.where(river, kbz * cbz_riv, kbz)
        if cbz_lake is not None:
            kbz = np.where(lake, kbz * cbz_lake, kbz)

        out["henry"] = henry_constant(temp)
        out["schmidt"] = sc
        out["k600_m_dy"] = k600_m_dy
        out["k600_m_s"] = k600_m_dy / SECONDS_PER_DAY
        out["kco2_m_s"] = schmidt_scaled_k(k600_m_dy, sc) / SECONDS_PER_DAY
        out["kco2_s"] = kco2(k600_m_dy, sc, D)
        out["kbz_s"] = kbz
    return out
