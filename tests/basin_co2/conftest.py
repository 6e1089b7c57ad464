# -*- coding: utf-8 -*-
"""
Shared pytest fixtures for basin_co2 tests.

Provides:
- A two-basin network (0101 drains into terminal basin 0102)
- Raw reach tables for both basins, including the three-reach headwater basin
- In-memory hydrography and a constant-CO2 solver stub
"""

import sys
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

# Add project root to path
main_dir = Path(__file__).parent.parent.parent
sys.path.insert(0, str(main_dir))

from src.basin_co2.config import ModelConfig
from src.basin_co2.routing import FrameHydrography


# ==============================================================================
# Reach tables
# ==============================================================================

def _river_table(reach_id, from_node, to_node, Q, slope, temp):
    n = len(reach_id)
    return pd.DataFrame({
        "reach_id": reach_id,
        "waterbody": ["River"] * n,
        "Q_m3_s": Q,
        "length_km": [1.0] * n,
        "slope": slope,
        "lake_volume_m3": [np.nan] * n,
        "lake_area_m2": [np.nan] * n,
        "temp_water_c": temp,
        "temp_air_c": temp,
        "a": [0.0] * n,
        "b": [0.5] * n,
        "c": [-1.0] * n,
        "f": [0.4] * n,
        "from_node": from_node,
        "to_node": to_node,
        "stream_order": [1] * n,
        "conus": [1] * n,
    })


@pytest.fixture
def headwater_reaches():
    """
    Basin 0101: three rivers, Q = [1, 2, 0].

    Reach 2 ends at node 10, the inflow node of basin 0102. Reach 3 has zero
    flow and an invalid slope with no neighbours.
    """
    return _river_table(
        reach_id=[1, 2, 3],
        from_node=[1, 2, 5],
        to_node=[2, 10, 6],
        Q=[1.0, 2.0, 0.0],
        slope=[0.001, 0.003, 0.0],
        temp=[15.0, 15.0, 15.0],
    )


@pytest.fixture
def outlet_reaches():
    """Basin 0102: a river feeding a lake."""
    df = _river_table(
        reach_id=[4, 5],
        from_node=[10, 11],
        to_node=[11, 12],
        Q=[3.0, 3.0],
        slope=[0.002, 0.0],
        temp=[16.0, 16.0],
    )
    df.loc[1, "waterbody"] = "Lake/Reservoir"
    df.loc[1, "lake_volume_m3"] = 2.0e6
    df.loc[1, "lake_area_m2"] = 5.0e5
    df.loc[1, ["a", "b", "c", "f"]] = np.nan
    return df


@pytest.fixture
def lookup():
    """Basin lookup table: 0101 -> 0102 -> (terminal)."""
    return pd.DataFrame({"HUC4": ["0101", "0102"], "toBasin": ["0102", None]})


@pytest.fixture
def hydrography():
    """Flowlines of both basins; 0102 starts at node 10."""
    return FrameHydrography({
        "0101": pd.DataFrame({
            "from_node": [1, 2, 5],
            "to_node": [2, 10, 6],
            "Q_m3_s": [1.0, 2.0, 0.0],
            "stream_order": [1, 2, 1],
            "hydro_seq": [3, 2, 1],
            "flow_dir": [1, 1, 1],
        }),
        "0102": pd.DataFrame({
            "from_node": [10, 11, 40],
            "to_node": [11, 12, 41],
            "Q_m3_s": [3.0, 3.0, 1.0],
            "stream_order": [2, 2, 1],
            "hydro_seq": [2, 1, 5],
            "flow_dir": [1, 1, 2],
        }),
    })


@pytest.fixture
def config(tmp_path):
    """Configuration rooted in a temporary directory."""
    return ModelConfig(data_root=tmp_path)


@pytest.fixture
def constant_solver():
    """Solver stub setting every reach to 800 ppm and recording its inflows."""
    calls = {}

    def solve(model, imports):
        calls[len(calls)] = list(imports)
        return model.assign(CO2_ppm=800.0)

    solve.calls = calls
    return solve
