"""
End-to-end tests of the HTTP surface
"""
import httpx
import pytest

from app.core.database import get_db
from app.main import app
from app.services.column_suggester import ColumnSuggester, get_column_suggester
from app.storage.file_storage import get_file_storage

from conftest import build_csv

PREFIX = "/api/v1"
PEOPLE_CSV = build_csv(["name", "age", "active"], [["Ana", "34", "true"], ["Bob", "", "false"]])


@pytest.fixture
async def client(session_factory, storage):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_file_storage] = lambda: storage
    app.dependency_overrides[get_column_suggester] = lambda: ColumnSuggester(api_key="", endpoint="", deployment="")
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


async def upload(client, organization_id, content=PEOPLE_CSV, filename="people.csv"):
    return await client.post(
        f"{PREFIX}/imports/upload",
        files={"file": (filename, content, "text/csv")},
        data={"organization_id": str(organization_id), "context": "People"},
    )


class TestOperationalEndpoints:

    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health", headers={"X-Request-ID": "req-1"})
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.headers["X-Request-ID"] == "req-1"

    @pytest.mark.asyncio
    async def test_detailed_health(self, client):
        response = await client.get("/health/detailed")
        data = response.json()
        assert data["checks"]["database"] == "healthy"
        assert data["checks"]["suggester"] == "not configured"

    @pytest.mark.asyncio
    async def test_metrics(self, client):
        await client.get("/health")
        response = await client.get("/metrics")
        assert response.status_code == 200
        assert "http_requests_total" in response.text


class TestImportEndpoints:

    @pytest.mark.asyncio
    async def test_upload_and_read(self, client, organization, other_organization):
        response = await upload(client, organization.id)
        assert response.status_code == 201
        body = response.json()
        file_id = body["file_id"]
        assert body["total_rows"] == 2
        assert [c["type"] for c in body["columns"]] == ["text", "integer", "boolean"]

        response = await client.get(f"{PREFIX}/imports/{file_id}", params={"organization_id": organization.id})
        assert response.status_code == 200
        assert response.json()["status"] == "analyzing"
        assert len(response.json()["columns"]) == 3

        response = await client.get(f"{PREFIX}/imports/{file_id}", params={"organization_id": other_organization.id})
        assert response.status_code == 404
        assert response.json()["error"] == "NOT_FOUND"

        response = await client.get(f"{PREFIX}/imports", params={"organization_id": organization.id})
        assert response.json()["total"] == 1

    @pytest.mark.asyncio
    async def test_malformed_upload(self, client, organization):
        response = await upload(client, organization.id, content=b"name,age\n")
        assert response.status_code == 400
        assert response.json()["error"] == "MALFORMED_FILE"

        response = await client.get(
            f"{PREFIX}/imports", params={"organization_id": organization.id, "status": "error"}
        )
        assert response.json()["total"] == 1

    @pytest.mark.asyncio
    async def test_staged_rows_and_statistics(self, client, organization):
        file_id = (await upload(client, organization.id)).json()["file_id"]

        response = await client.post(f"{PREFIX}/imports/rows", json={"fileId": file_id, "page": 2, "pageSize": 1})
        assert response.status_code == 200
        assert response.json() == {
            "data": [{"name": "Bob", "age": "", "active": "false"}],
            "totalRows": 2,
            "page": 2,
            "pageSize": 1,
            "totalPages": 2,
        }

        response = await client.post(f"{PREFIX}/imports/rows", json={"fileId": file_id, "pageSize": 5000})
        assert response.status_code == 422

        response = await client.post(f"{PREFIX}/imports/statistics", json={"fileId": file_id, "columnName": "age"})
        assert response.status_code == 200
        assert response.json()["distinct_count"] == 2
        assert response.json()["null_count"] == 1

        response = await client.post(f"{PREFIX}/imports/statistics", json={"fileId": file_id, "columnName": "nope"})
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_staged_reads_are_tenant_scoped(self, client, organization, other_organization):
        file_id = (await upload(client, organization.id)).json()["file_id"]

        response = await client.post(
            f"{PREFIX}/imports/rows", json={"fileId": file_id, "organizationId": other_organization.id}
        )
        assert response.status_code == 404

        response = await client.post(f"{PREFIX}/imports/statistics", json={
            "fileId": file_id, "columnName": "age", "organizationId": other_organization.id,
        })
        assert response.status_code == 404

        response = await client.post(
            f"{PREFIX}/imports/rows", json={"fileId": file_id, "organizationId": organization.id}
        )
        assert response.status_code == 200
        assert response.json()["totalRows"] == 2

    @pytest.mark.asyncio
    async def test_column_edits(self, client, organization):
        file_id = (await upload(client, organization.id)).json()["file_id"]
        imported = (await client.get(f"{PREFIX}/imports/{file_id}", params={"organization_id": organization.id})).json()
        column_id = imported["columns"][0]["id"]

        response = await client.patch(
            f"{PREFIX}/imports/{file_id}/columns/{column_id}",
            params={"organization_id": organization.id},
            json={"displayName": "customer_name", "description": "Who bought"},
        )
        assert response.status_code == 200
        assert response.json()["display_name"] == "customer_name"

        response = await client.post(
            f"{PREFIX}/imports/{file_id}/columns/suggestions/accept",
            json={
                "organizationId": organization.id,
                "suggestions": [
                    {"original_name": "age", "suggested_name": "customer_age"},
                    {"original_name": "missing", "suggested_name": "x"},
                ],
            },
        )
        assert response.json() == {"updated": 1, "skipped": ["missing"]}

    @pytest.mark.asyncio
    async def test_suggestions_are_advisory(self, client):
        response = await client.post(
            f"{PREFIX}/imports/suggestions",
            json={"description": "People", "columns": [{"name": "nm", "sample": ["Ana"]}]},
        )
        assert response.status_code == 200
        assert response.json()["suggestions"] == []
        assert response.json()["error"] == "Column suggester is not configured"


class TestPipelineEndpoints:

    @pytest.mark.asyncio
    async def test_materialize_analyze_and_fix(self, client, organization):
        file_id = (await upload(client, organization.id)).json()["file_id"]
        columns = {"name": {"type": "text"}, "age": {"type": "integer"}, "active": {"type": "boolean"}}

        response = await client.post(f"{PREFIX}/tables/materialize", json={
            "tableName": "People Table",
            "columns": columns,
            "organizationId": organization.id,
            "fileId": file_id,
        })
        assert response.status_code == 200
        assert response.json()["tableName"] == "people_table"
        assert response.json()["rowsInserted"] == 2
        assert response.json()["created"] is True

        response = await client.post(f"{PREFIX}/quality/analyze", json={
            "fileId": file_id, "tableName": "people_table", "organizationId": organization.id,
        })
        assert response.status_code == 201
        results = response.json()["analysis"]["results"]
        assert results["columns"]["age"]["completeness"] == 0.5
        assert [issue["column"] for issue in results["issues"]] == ["age"]

        response = await client.post(f"{PREFIX}/fixes/apply", json={
            "fileId": file_id, "fixType": "fill_nulls", "column": "age", "organizationId": organization.id,
        })
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["rowsUpdated"] == 1
        assert body["qualityStale"] is True
        assert "rowsRemoved" not in body

        response = await client.get(
            f"{PREFIX}/imports/{file_id}/transformations", params={"organization_id": organization.id}
        )
        assert response.json()["total"] == 1
        assert response.json()["transformations"][0]["transformation_type"] == "fill_nulls"

        response = await client.get(f"{PREFIX}/imports/{file_id}/analyses", params={"organization_id": organization.id})
        assert response.json()["total"] == 1

    @pytest.mark.asyncio
    async def test_coercion_error_response(self, client, organization):
        file_id = (await upload(client, organization.id)).json()["file_id"]

        response = await client.post(f"{PREFIX}/tables/materialize", json={
            "tableName": "people",
            "columns": {"name": {"type": "numeric"}},
            "organizationId": organization.id,
            "fileId": file_id,
        })

        assert response.status_code == 422
        assert response.json()["error"] == "COERCION_ERROR"
        assert response.json()["details"]["row_number"] == 1

        imported = await client.get(f"{PREFIX}/imports/{file_id}", params={"organization_id": organization.id})
        assert imported.json()["status"] == "analyzing"

    @pytest.mark.asyncio
    async def test_fix_errors(self, client, organization):
        file_id = (await upload(client, organization.id)).json()["file_id"]

        response = await client.post(f"{PREFIX}/fixes/apply", json={
            "fileId": file_id, "fixType": "explode", "column": "age", "organizationId": organization.id,
        })
        assert response.status_code == 400
        assert response.json()["error"] == "VALIDATION_ERROR"

        response = await client.post(f"{PREFIX}/fixes/apply", json={
            "fileId": file_id, "fixType": "trim", "column": "age", "organizationId": organization.id,
        })
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_quality_requires_materialized_import(self, client, organization):
        file_id = (await upload(client, organization.id)).json()["file_id"]

        response = await client.post(f"{PREFIX}/quality/analyze", json={
            "fileId": file_id, "tableName": "people", "organizationId": organization.id,
        })

        assert response.status_code == 409
        assert response.json()["error"] == "STATE_CONFLICT"
