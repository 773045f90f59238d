"""
Tests for per-column statistics over staged rows
"""
import math

import pytest

from app.core.exceptions import NotFoundError
from app.services.column_profiler import ColumnProfilerService, ColumnStatisticsAccumulator
from app.services.import_lifecycle import ImportLifecycleService
from app.services.ingestion import IngestionService

from conftest import build_csv


async def _ingest(db, organization, storage, headers, rows):
    result = await IngestionService.ingest_file(
        db, build_csv(headers, rows), "profile.csv", organization.id, storage
    )
    return result["file_id"]


class TestColumnStatisticsAccumulator:

    def test_empty_column(self):
        stats = ColumnStatisticsAccumulator().result()

        assert stats["count"] == 0
        assert stats["completeness"] is None
        assert stats["uniqueness"] is None
        assert stats["mode"] == []

    def test_mode_ties_keep_encounter_order(self):
        accumulator = ColumnStatisticsAccumulator()
        for value in ["b", "a", "c", "a", "b", "d"]:
            accumulator.add(value)

        assert accumulator.result()["mode"] == ["b", "a", "c"]

    def test_nulls_include_none_and_empty_string(self):
        accumulator = ColumnStatisticsAccumulator()
        for value in [None, "", "x", "x"]:
            accumulator.add(value)

        stats = accumulator.result()
        assert stats["null_count"] == 2
        assert stats["distinct_count"] == 2
        assert stats["completeness"] == 0.5

    def test_nearest_rank_percentiles(self):
        accumulator = ColumnStatisticsAccumulator()
        for value in ["7", "3", "10", "1", "5", "9", "2", "8", "4", "6"]:
            accumulator.add(value)

        stats = accumulator.result()
        assert stats["min"] == 1
        assert stats["max"] == 10
        assert stats["mean"] == pytest.approx(5.5)
        assert stats["median"] == 6
        assert stats["quartiles"] == [3, 6, 8]
        assert stats["standard_deviation"] == pytest.approx(math.sqrt(8.25))

    def test_non_numeric_values_are_left_out_of_aggregates(self):
        accumulator = ColumnStatisticsAccumulator()
        for value in ["2", "n/a", "4", "inf"]:
            accumulator.add(value)

        stats = accumulator.result()
        assert stats["mean"] == 3
        assert stats["max"] == 4
        assert stats["distinct_count"] == 4


class TestComputeColumnStatistics:

    @pytest.mark.asyncio
    async def test_people_file(self, db, organization, storage):
        import_id = await _ingest(
            db, organization, storage, ["name", "age", "active"], [["Ana", "34", "true"], ["Bob", "", "false"]]
        )

        age = await ColumnProfilerService.compute_column_statistics(db, import_id, "age")
        assert age["count"] == 2
        assert age["distinct_count"] == 2
        assert age["null_count"] == 1
        assert age["min"] == 34
        assert age["median"] == 34
        assert age["standard_deviation"] == 0
        assert age["distribution"] == {"34": 1, "": 1}

        name = await ColumnProfilerService.compute_column_statistics(db, import_id, "name")
        assert name["null_count"] == 0
        assert name["distinct_count"] == 2
        assert name["uniqueness"] == 1
        assert name["min"] is None
        assert name["quartiles"] is None

    @pytest.mark.asyncio
    async def test_paging_does_not_change_the_result(self, db, organization, storage):
        rows = [[str(value)] for value in [5, 3, 5, 1, 9, 3, 5]]
        import_id = await _ingest(db, organization, storage, ["score"], rows)

        whole = await ColumnProfilerService.compute_column_statistics(db, import_id, "score")
        paged = await ColumnProfilerService.compute_column_statistics(db, import_id, "score", page_size=2)

        assert whole == paged
        assert whole["mode"] == ["5", "3", "1"]

    @pytest.mark.asyncio
    async def test_lookup_by_display_name(self, db, organization, storage):
        import_id = await _ingest(db, organization, storage, ["cod"], [["1"], ["2"]])
        column = (await ImportLifecycleService.get_columns(db, import_id))[0]
        await ImportLifecycleService.update_column(db, import_id, column.id, organization.id, display_name="code")

        stats = await ColumnProfilerService.compute_column_statistics(db, import_id, "code")

        assert stats["count"] == 2

    @pytest.mark.asyncio
    async def test_unknown_column(self, db, organization, storage):
        import_id = await _ingest(db, organization, storage, ["a"], [["1"]])

        with pytest.raises(NotFoundError):
            await ColumnProfilerService.compute_column_statistics(db, import_id, "missing")

    @pytest.mark.asyncio
    async def test_other_tenant_import(self, db, organization, other_organization, storage):
        import_id = await _ingest(db, organization, storage, ["a"], [["1"]])

        with pytest.raises(NotFoundError):
            await ColumnProfilerService.compute_column_statistics(
                db, import_id, "a", organization_id=other_organization.id
            )
