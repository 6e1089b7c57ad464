"""
Tests for basin routing: basin graph, hydrography sources, export records.
"""

import duckdb
import numpy as np
import pandas as pd
import pytest

pytestmark = pytest.mark.topology


def _solved(reaches, co2):
    from src.basin_co2.reach import normalize_reach_table

    return normalize_reach_table(reaches).assign(CO2_ppm=co2)


# =============================================================================
# Basin codes and graph
# =============================================================================


class TestBasinCode:

    @pytest.mark.parametrize(
        "value, expected",
        [(101, "0101"), (101.0, "0101"), ("0101", "0101"), (" 1710a ", "1710a"), (1710, "1710")],
    )
    def test_normalisation(self, value, expected):
        from src.basin_co2.routing import basin_code

        assert basin_code(value) == expected

    @pytest.mark.parametrize("value", [None, np.nan, "", "  "])
    def test_missing(self, value):
        from src.basin_co2.routing import basin_code

        assert basin_code(value) is None


class TestBasinGraph:

    @pytest.fixture
    def lookup(self):
        # 0101 and 0102 both drain into 0103, which drains into 0104
        return pd.DataFrame({
            "HUC4": [101, 102, 103, 104],
            "toBasin": [103, 103, 104, np.nan],
        })

    def test_adjacency(self, lookup):
        from src.basin_co2.routing import BasinGraph

        graph = BasinGraph.from_lookup(lookup)
        assert len(graph) == 4
        assert "0101" in graph
        assert graph.downstream("0101") == ["0103"]
        assert sorted(graph.upstream("0103")) == ["0101", "0102"]
        assert graph.all_upstream("0104") == {"0101", "0102", "0103"}
        assert graph.terminal_basins() == ["0104"]

    def test_topological_order(self, lookup):
        from src.basin_co2.routing import BasinGraph

        order = BasinGraph.from_lookup(lookup).topological_order()
        assert order.index("0101") < order.index("0103")
        assert order.index("0102") < order.index("0103")
        assert order.index("0103") < order.index("0104")

    def test_generations(self, lookup):
        from src.basin_co2.routing import BasinGraph

        assert BasinGraph.from_lookup(lookup).generations() == [
            ["0101", "0102"],
            ["0103"],
            ["0104"],
        ]

    def test_cycle_raises(self):
        from src.basin_co2.routing import BasinCycleError, BasinGraph

        lookup = pd.DataFrame({"HUC4": ["0101", "0102"], "toBasin": ["0102", "0101"]})
        with pytest.raises(BasinCycleError) as exc:
            BasinGraph.from_lookup(lookup)
        assert set(exc.value.cycle) == {"0101", "0102"}

    def test_multiple_rows_per_basin(self):
        from src.basin_co2.routing import BasinGraph, downstream_basins

        lookup = pd.DataFrame({"HUC4": ["0101", "0101"], "toBasin": ["0102", "0103"]})
        graph = BasinGraph.from_lookup(lookup)
        assert sorted(graph.downstream("0101")) == ["0102", "0103"]
        assert downstream_basins(lookup, "0101") == ["0102", "0103"]


# =============================================================================
# Hydrography
# =============================================================================


class TestHydrography:

    def test_filter_flowing_reaches(self):
        from src.basin_co2.routing import filter_flowing_reaches

        df = pd.DataFrame({
            "from_node": [1, 2, 3, 4, 5],
            "to_node": [2, 3, 4, 5, 6],
            "Q_m3_s": [1.0, 0.0, 1.0, 1.0, 1.0],
            "stream_order": [1, 1, 0, 1, 1],
            "hydro_seq": [1, 2, 3, np.nan, 5],
            "flow_dir": [1, 1, 1, 1, 2],
        })
        out = filter_flowing_reaches(df)
        assert out["from_node"].tolist() == [1]

    def test_frame_hydrography_unknown_basin(self, hydrography):
        with pytest.raises(FileNotFoundError):
            hydrography.load("9999")

    def test_frame_hydrography_filters(self, hydrography):
        out = hydrography.load("0102")
        assert out["from_node"].tolist() == [10, 11]

    def test_parquet_paths(self, config):
        from src.basin_co2.routing import ParquetHydrography

        hydro = ParquetHydrography(config)
        assert hydro.path_for("0101") == config.data_root / "HUC2_01" / "flowlines_0101.parquet"
        assert hydro.path_for("0508") == (
            config.data_root / "HUC2_05" / "indiana" / "indiana_fixed_0508.parquet"
        )

    def test_parquet_missing_file(self, config):
        from src.basin_co2.routing import ParquetHydrography

        with pytest.raises(FileNotFoundError):
            ParquetHydrography(config).load("0101")


@pytest.mark.db
class TestParquetHydrography:
    """Round trip through parquet files written with DuckDB."""

    def _write(self, df, path):
        path.parent.mkdir(parents=True, exist_ok=True)
        con = duckdb.connect()
        try:
            con.register("flowlines", df)
            con.execute(f"COPY (SELECT * FROM flowlines) TO '{path}' (FORMAT PARQUET)")
        finally:
            con.close()

    @pytest.fixture
    def flowlines(self):
        return pd.DataFrame({
            "from_node": [10.2, 11.0, 12.0],
            "to_node": [11.0, 12.0, 13.0],
            "Q_m3_s": [3.0, 3.0, 0.0],
            "stream_order": [2, 2, 2],
            "hydro_seq": [3.0, 2.0, 1.0],
            "flow_dir": [1, 1, 1],
        })

    def test_load_filters_in_sql(self, config, flowlines):
        from src.basin_co2.routing import ParquetHydrography

        hydro = ParquetHydrography(config)
        self._write(flowlines, hydro.path_for("0101"))
        out = hydro.load("0101")
        assert len(out) == 2
        assert out["from_node"].tolist() == pytest.approx([10.2, 11.0])

    def test_alternate_basin_rounds_nodes(self, config, flowlines):
        from src.basin_co2.routing import ParquetHydrography

        hydro = ParquetHydrography(config)
        self._write(flowlines, hydro.path_for("0508"))
        out = hydro.load("0508")
        assert out["from_node"].tolist() == pytest.approx([10.0, 11.0])


# =============================================================================
# Exports
# =============================================================================


class TestGetExported:

    def test_single_boundary_reach(self, headwater_reaches, lookup, hydrography):
        from src.basin_co2.routing import get_exported

        model = _solved(headwater_reaches, [500.0, 600.0, 700.0])
        records = get_exported(model, "0101", lookup, hydrography)
        assert len(records) == 1
        rec = records[0]
        assert rec.downstream_basin == "0102"
        assert rec.source_basin == "0101"
        assert rec.exported_co2_ppm == 600.0
        assert rec.exported_to_node == 10
        assert rec.exported_q_cms == 2.0
        assert not rec.is_proxy

    def test_terminal_basin(self, outlet_reaches, lookup, hydrography):
        from src.basin_co2.routing import get_exported

        model = _solved(outlet_reaches, 900.0)
        records = get_exported(model, "0102", lookup, hydrography)
        assert len(records) == 1
        assert records[0].is_terminal
        assert np.isnan(records[0].exported_co2_ppm)

    def test_no_match_uses_max_discharge_proxy(self, headwater_reaches, lookup, hydrography):
        from src.basin_co2.routing import get_exported

        reaches = headwater_reaches.copy()
        reaches["to_node"] = [2, 20, 6]
        model = _solved(reaches, [500.0, 600.0, 700.0])
        records = get_exported(model, "0101", lookup, hydrography)
        assert len(records) == 1
        rec = records[0]
        assert rec.is_proxy
        assert rec.exported_co2_ppm == 600.0
        assert np.isnan(rec.exported_q_cms)

    def test_missing_co2_column(self, headwater_reaches, lookup, hydrography):
        from src.basin_co2.reach import ReachTableError
        from src.basin_co2.routing import get_exported

        with pytest.raises(ReachTableError):
            get_exported(headwater_reaches, "0101", lookup, hydrography)

    def test_exported_q_matches_flagged_reaches(self, headwater_reaches, lookup, hydrography):
        from src.basin_co2.routing import flag_boundary_outflow, get_exported

        reaches = headwater_reaches.copy()
        reaches["to_node"] = [10, 10, 6]
        model = _solved(reaches, 700.0)
        records = get_exported(model, "0101", lookup, hydrography)
        flagged = flag_boundary_outflow(model, records)

        assert len(records) == 2
        assert flagged["is_boundary_outflow"].tolist() == [True, True, False]
        assert sum(r.exported_q_cms for r in records) == pytest.approx(
            flagged.loc[flagged["is_boundary_outflow"], "Q_m3_s"].sum()
        )


class TestExportRecords:

    def test_frame_and_imports(self):
        from src.basin_co2.routing import EXPORT_COLUMNS, ExportRecord, exports_to_frame, imports_for

        records = [
            ExportRecord("0103", 600.0, 10, 2.0, "0101"),
            ExportRecord("0103", 650.0, 11, 1.0, "0102"),
            ExportRecord.missing("0103"),
        ]
        df = exports_to_frame(records)
        assert list(df.columns) == ["source_basin", *EXPORT_COLUMNS]
        assert len(df) == 3
        assert [r.source_basin for r in imports_for("0103", records)] == ["0101", "0102"]
        assert imports_for("0101", records) == []

    def test_empty_frame(self):
        from src.basin_co2.routing import exports_to_frame

        assert exports_to_frame([]).empty
