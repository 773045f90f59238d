"""
Shared fixtures: an in-memory SQLite database per test, a local file store
and small helpers for building uploads and imports.
"""
import io
import os
import tempfile

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("LOCAL_STORAGE_PATH", tempfile.mkdtemp(prefix="imports-storage-"))
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pandas as pd
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.core.database import Base
from app.models.database import ColumnMetadata, DataImport, ImportStatus, Organization
from app.storage.file_storage import FileStorage


def build_csv(headers, rows) -> bytes:
    lines = [",".join(headers)]
    lines.extend(",".join("" if cell is None else str(cell) for cell in row) for row in rows)
    return ("\n".join(lines) + "\n").encode("utf-8")


def build_xlsx(headers, rows) -> bytes:
    buffer = io.BytesIO()
    pd.DataFrame(rows, columns=headers).to_excel(buffer, index=False, engine="openpyxl")
    return buffer.getvalue()


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def organization(db):
    org = Organization(name="Acme")
    db.add(org)
    await db.commit()
    return org


@pytest.fixture
async def other_organization(db):
    org = Organization(name="Globex")
    db.add(org)
    await db.commit()
    return org


@pytest.fixture
def storage(tmp_path):
    return FileStorage(provider="local", local_storage_path=str(tmp_path / "uploads"))


@pytest.fixture
def make_import(db):
    """Create an import awaiting materialization with the given column names."""

    async def _make_import(organization_id, columns, name="dataset", status=ImportStatus.ANALYZING):
        data_import = DataImport(
            organization_id=organization_id,
            name=name,
            original_filename=f"{name}.csv",
            file_type="csv",
            status=status,
        )
        db.add(data_import)
        await db.flush()
        for position, (column_name, data_type) in enumerate(columns.items()):
            db.add(ColumnMetadata(
                import_id=data_import.id,
                position=position,
                original_name=column_name,
                data_type=data_type,
                sample_values=[],
            ))
        await db.commit()
        return data_import

    return _make_import
