"""
Tests for corrective fixes on materialized tables and their audit trail
"""
import pytest
from sqlalchemy import select

from app.core.exceptions import AuditRecordImmutableError, NotFoundError, UnsupportedTypeError, ValidationError
from app.services.data_quality import DataQualityService
from app.services.fix_applicator import FixApplicatorService, TEXT_FALLBACK, normalize_fix_type
from app.services.import_lifecycle import ImportLifecycleService
from app.services.schema_materializer import SchemaMaterializerService
from app.storage.dynamic_tables import reflect_table

TABLE = "fix_data"


@pytest.fixture
def materialized(db, organization, make_import):

    async def _materialized(columns, rows):
        data_import = await make_import(organization.id, columns)
        await SchemaMaterializerService.materialize(
            db, TABLE, {name: {"type": data_type} for name, data_type in columns.items()},
            organization.id, preview_data=rows, file_id=data_import.id,
        )
        return data_import

    return _materialized


async def _column_values(db, column):
    table = await reflect_table(db, TABLE)
    result = await db.execute(select(table.c[column]).order_by(table.c.id))
    return list(result.scalars().all())


class TestNormalizeFixType:

    def test_aliases(self):
        assert normalize_fix_type("fill_missing_values") == "fill_nulls"
        assert normalize_fix_type("Remove_Duplicates") == "handle_duplicates"
        assert normalize_fix_type("format_standardization") == "standardize_format"
        assert normalize_fix_type("trim") == "trim"

    def test_unknown_fix_type(self):
        with pytest.raises(ValidationError):
            normalize_fix_type("drop_table")


class TestFillNulls:

    @pytest.mark.asyncio
    async def test_text_nulls_get_most_frequent_value(self, db, organization, materialized):
        values = ["N/A"] * 4 + ["ok", "ok", "late"] + [None] * 3
        data_import = await materialized({"status": "text"}, [{"status": v} for v in values])

        result = await FixApplicatorService.apply_fix(db, data_import.id, "fill_nulls", organization.id, "status")

        assert result["success"] is True
        assert result["rows_updated"] == 3
        assert "rows_removed" not in result
        assert result["quality_stale"] is False
        assert await _column_values(db, "status") == ["N/A"] * 4 + ["ok", "ok", "late"] + ["N/A"] * 3

        transformations = await FixApplicatorService.list_transformations(db, data_import.id, organization.id)
        assert len(transformations) == 1
        assert transformations[0].id == result["transformation_id"]
        assert transformations[0].transformation_type == "fill_nulls"
        assert transformations[0].column_name == "status"
        assert transformations[0].rows_affected == 3
        assert transformations[0].parameters == {"default": "N/A"}

    @pytest.mark.asyncio
    async def test_empty_text_column_uses_fallback(self, db, organization, materialized):
        data_import = await materialized({"note": "text"}, [{"note": None}, {"note": ""}])

        result = await FixApplicatorService.apply_fix(db, data_import.id, "fill_nulls", organization.id, "note")

        assert result["rows_updated"] == 2
        assert await _column_values(db, "note") == [TEXT_FALLBACK, TEXT_FALLBACK]

    @pytest.mark.asyncio
    async def test_numeric_and_boolean_defaults(self, db, organization, materialized):
        data_import = await materialized(
            {"qty": "integer", "paid": "boolean"},
            [{"qty": "5", "paid": "yes"}, {"qty": "", "paid": ""}],
        )

        await FixApplicatorService.apply_fix(db, data_import.id, "fill_nulls", organization.id, "qty")
        await FixApplicatorService.apply_fix(db, data_import.id, "fill_missing_values", organization.id, "paid")

        assert await _column_values(db, "qty") == [5, 0]
        assert await _column_values(db, "paid") == [True, False]

    @pytest.mark.asyncio
    async def test_marks_existing_quality_analysis_stale(self, db, organization, materialized):
        data_import = await materialized({"city": "text"}, [{"city": "Natal"}, {"city": None}])
        analysis = await DataQualityService().analyze(db, data_import.id, TABLE, organization.id)

        result = await FixApplicatorService.apply_fix(db, data_import.id, "fill_nulls", organization.id, "city")

        assert result["quality_stale"] is True
        refreshed = await ImportLifecycleService.get_import(db, data_import.id)
        assert refreshed.data_quality["stale"] is True
        assert refreshed.data_quality["lastAnalysisId"] == analysis.id


class TestHandleDuplicates:

    @pytest.mark.asyncio
    async def test_keeps_first_row_and_ignores_nulls(self, db, organization, materialized):
        emails = ["a@x.com", "b@x.com", "a@x.com", None, None, "b@x.com", "c@x.com"]
        data_import = await materialized({"email": "text"}, [{"email": e} for e in emails])

        result = await FixApplicatorService.apply_fix(
            db, data_import.id, "handle_duplicates", organization.id, "email"
        )

        assert result["rows_removed"] == 2
        assert "rows_updated" not in result
        assert await _column_values(db, "email") == ["a@x.com", "b@x.com", None, None, "c@x.com"]

    @pytest.mark.asyncio
    async def test_whole_row_duplicates(self, db, organization, materialized):
        rows = [
            {"name": "Ana", "city": "Natal"},
            {"name": "Ana", "city": "Recife"},
            {"name": "Ana", "city": "Natal"},
        ]
        data_import = await materialized({"name": "text", "city": "text"}, rows)

        result = await FixApplicatorService.apply_fix(db, data_import.id, "remove_duplicates", organization.id)

        assert result["rows_removed"] == 1
        assert await _column_values(db, "city") == ["Natal", "Recife"]
        transformations = await FixApplicatorService.list_transformations(db, data_import.id)
        assert transformations[0].column_name == "all"
        assert transformations[0].parameters["columns"] == ["name", "city"]

    @pytest.mark.asyncio
    async def test_second_run_removes_nothing(self, db, organization, materialized):
        data_import = await materialized({"v": "integer"}, [{"v": "1"}, {"v": "1"}])

        first = await FixApplicatorService.apply_fix(db, data_import.id, "handle_duplicates", organization.id, "v")
        second = await FixApplicatorService.apply_fix(db, data_import.id, "handle_duplicates", organization.id, "v")

        assert (first["rows_removed"], second["rows_removed"]) == (1, 0)
        assert len(await FixApplicatorService.list_transformations(db, data_import.id)) == 2


class TestTextFixes:

    @pytest.mark.asyncio
    async def test_standardize_text(self, db, organization, materialized):
        data_import = await materialized({"city": "text"}, [{"city": "  Natal "}, {"city": "recife"}, {"city": None}])

        result = await FixApplicatorService.apply_fix(
            db, data_import.id, "standardize_format", organization.id, "city"
        )

        assert result["rows_updated"] == 1
        assert await _column_values(db, "city") == ["natal", "recife", None]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("fix_type,expected", [
        ("trim", ["Ana", "bob"]),
        ("uppercase", [" ANA ", "BOB"]),
        ("lowercase", [" ana ", "bob"]),
    ])
    async def test_case_and_trim(self, db, organization, materialized, fix_type, expected):
        data_import = await materialized({"name": "text"}, [{"name": " Ana "}, {"name": "bob"}])

        await FixApplicatorService.apply_fix(db, data_import.id, fix_type, organization.id, "name")

        assert await _column_values(db, "name") == expected

    @pytest.mark.asyncio
    async def test_text_fix_on_number_is_unsupported(self, db, organization, materialized):
        data_import = await materialized({"qty": "integer"}, [{"qty": "1"}])
        # a failed fix rolls back the session and expires loaded instances
        import_id, organization_id = data_import.id, organization.id

        with pytest.raises(UnsupportedTypeError):
            await FixApplicatorService.apply_fix(db, import_id, "uppercase", organization_id, "qty")
        with pytest.raises(UnsupportedTypeError):
            await FixApplicatorService.apply_fix(db, import_id, "standardize_format", organization_id, "qty")

        assert await FixApplicatorService.list_transformations(db, import_id) == []


class TestFixPreconditions:

    @pytest.mark.asyncio
    async def test_column_is_required(self, db, organization, materialized):
        data_import = await materialized({"a": "text"}, [{"a": "x"}])

        with pytest.raises(ValidationError):
            await FixApplicatorService.apply_fix(db, data_import.id, "fill_nulls", organization.id)

    @pytest.mark.asyncio
    async def test_unknown_column(self, db, organization, materialized):
        data_import = await materialized({"a": "text"}, [{"a": "x"}])

        with pytest.raises(NotFoundError):
            await FixApplicatorService.apply_fix(db, data_import.id, "trim", organization.id, "b")

    @pytest.mark.asyncio
    async def test_import_without_table(self, db, organization, make_import):
        data_import = await make_import(organization.id, {"a": "text"})

        with pytest.raises(NotFoundError):
            await FixApplicatorService.apply_fix(db, data_import.id, "trim", organization.id, "a")

    @pytest.mark.asyncio
    async def test_other_tenant(self, db, organization, other_organization, materialized):
        data_import = await materialized({"a": "text"}, [{"a": "x"}])

        with pytest.raises(NotFoundError):
            await FixApplicatorService.apply_fix(db, data_import.id, "trim", other_organization.id, "a")

    @pytest.mark.asyncio
    async def test_transformations_are_immutable(self, db, organization, materialized):
        data_import = await materialized({"a": "text"}, [{"a": " x"}])
        await FixApplicatorService.apply_fix(db, data_import.id, "trim", organization.id, "a")
        transformation = (await FixApplicatorService.list_transformations(db, data_import.id))[0]

        transformation.rows_affected = 99
        with pytest.raises(AuditRecordImmutableError):
            await db.flush()
        await db.rollback()
