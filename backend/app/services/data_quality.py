"""
Data quality service: completeness, uniqueness and consistency of a materialized table.
"""
import contextlib
import math
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select, func, distinct, case, cast, literal, Float, Table
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.database import is_postgresql, set_tenant_scope
from app.core.exceptions import NotFoundError, StateConflictError, ValidationError
from app.core.logging import get_logger
from app.core.metrics import quality_analyses_total, column_statistics_failures_total
from app.models.database.column_metadata import ColumnMetadata
from app.models.database.data_analyses import DataAnalysis
from app.models.database.data_imports import ImportStatus
from app.processors.file_processor import classify_value
from app.services.import_lifecycle import ImportLifecycleService
from app.storage.dynamic_tables import (
    TENANT_COLUMN, column_kind, data_columns, physical_column_name, reflect_table, sanitize_identifier,
)

logger = get_logger(__name__)

COMPLETENESS_WEIGHT = 0.7
UNIQUENESS_WEIGHT = 0.3

# Weights of the integrity score, which also accounts for consistency
INTEGRITY_WEIGHTS = {"completeness": 0.4, "uniqueness": 0.3, "consistency": 0.3}

# Integers and decimals in one column are the same format
_CONSISTENCY_FAMILY = {"integer": "numeric"}


def consistency_score(value_counts: Dict[Any, int]) -> Dict[str, Any]:
    """
    Share of non-empty values having the column's dominant format.

    Args:
        value_counts: Distinct raw value -> number of rows

    Returns:
        ``{"consistency", "dominant_type"}``, both None when every value is empty
    """
    formats: Counter = Counter()
    for value, count in value_counts.items():
        kind = classify_value(value)
        if kind is not None:
            formats[_CONSISTENCY_FAMILY.get(kind, kind)] += count
    total = sum(formats.values())
    if total == 0:
        return {"consistency": None, "dominant_type": None}
    dominant_type, dominant_count = formats.most_common(1)[0]
    return {"consistency": dominant_count / total, "dominant_type": dominant_type}


class DataQualityService:
    """Service for analyzing the quality of materialized imports."""

    def __init__(
        self,
        issue_threshold: Optional[float] = None,
        high_severity_threshold: Optional[float] = None
    ):
        self.quality_thresholds = {
            "completeness": issue_threshold or settings.QUALITY_ISSUE_THRESHOLD,
            "high_severity": high_severity_threshold or settings.QUALITY_HIGH_SEVERITY_THRESHOLD,
            "duplicates_min_uniqueness": 0.5,
            "duplicates_max_uniqueness": 0.9,
            "consistency": 0.8,
        }

    async def analyze(
        self,
        db: AsyncSession,
        import_id: int,
        table_name: str,
        organization_id: int
    ) -> DataAnalysis:
        """
        Run a quality analysis and record it.

        Args:
            db: Database session
            import_id: Import whose columns are analyzed
            table_name: Materialized table of the import
            organization_id: Owning organization

        Returns:
            The new DataAnalysis record

        Raises:
            NotFoundError: If the import, its columns or its table are missing
            StateConflictError: If the import has not been materialized
        """
        data_import = await ImportLifecycleService.get_import(db, import_id, organization_id)
        if data_import.status != ImportStatus.COMPLETED:
            raise StateConflictError(
                f"Import {import_id} is '{data_import.status.value}', quality analysis requires 'completed'",
                details={"import_id": import_id, "status": data_import.status.value},
            )
        physical_name = sanitize_identifier(table_name)
        if physical_name != data_import.table_name:
            raise ValidationError(
                f"Table {physical_name} does not belong to import {import_id}",
                details={"table_name": physical_name, "import_table_name": data_import.table_name},
            )

        columns = await ImportLifecycleService.get_columns(db, import_id)
        if not columns:
            raise NotFoundError("Column", message=f"Import {import_id} has no columns")

        logger.info(
            f"Running quality analysis for import {import_id}",
            extra={"import_id": import_id, "organization_id": organization_id, "table_name": physical_name},
        )

        try:
            await set_tenant_scope(db, organization_id)
            table = await reflect_table(db, physical_name)
            total_rows = (await db.execute(
                select(func.count()).select_from(table).where(table.c[TENANT_COLUMN] == organization_id)
            )).scalar_one()

            column_results: Dict[str, Dict[str, Any]] = {}
            skipped: List[Dict[str, str]] = []
            for column in columns:
                try:
                    stats = await self._analyze_column(db, table, column, organization_id, total_rows)
                except (SQLAlchemyError, NotFoundError) as e:
                    column_statistics_failures_total.inc()
                    logger.warning(
                        f"Skipping column {column.original_name} of import {import_id}: {e}",
                        extra={"import_id": import_id, "column": column.original_name},
                    )
                    skipped.append({"column": column.original_name, "reason": str(e)})
                    continue
                column.statistics = stats
                column_results[column.original_name] = stats

            results = self._summarize(column_results, total_rows)
            results["skipped_columns"] = skipped

            analysis = DataAnalysis(
                import_id=import_id,
                analysis_type="quality",
                configuration={
                    "table_name": physical_name,
                    "organization_id": organization_id,
                    "thresholds": self.quality_thresholds,
                },
                results=results,
            )
            db.add(analysis)
            await db.flush()

            data_import.data_quality = {
                "lastAnalysisId": analysis.id,
                "overallQuality": results["overall_quality"],
                "issuesCount": len(results["issues"]),
                "analyzedAt": datetime.now(timezone.utc).isoformat(),
                "stale": False,
            }
            await db.commit()
            await db.refresh(analysis)
        except Exception as e:
            quality_analyses_total.labels(status="error").inc()
            logger.error(f"Error analyzing quality of import {import_id}: {e}", exc_info=True)
            raise

        quality_analyses_total.labels(status="success").inc()
        logger.info(
            f"Quality analysis {analysis.id} for import {import_id}: "
            f"overall quality {results['overall_quality']}, {len(results['issues'])} issues"
        )
        return analysis

    async def _analyze_column(
        self,
        db: AsyncSession,
        table: Table,
        column: ColumnMetadata,
        organization_id: int,
        total_rows: int
    ) -> Dict[str, Any]:
        """Null, distinct and numeric aggregates of one column, computed in SQL."""
        physical = self._resolve_physical_column(table, column)
        col = table.c[physical]
        kind = column_kind(col)

        if kind == "text":
            null_condition = col.is_(None) | (col == "")
            distinct_expr = func.count(distinct(func.nullif(col, "")))
        else:
            null_condition = col.is_(None)
            distinct_expr = func.count(distinct(col))

        aggregates = [
            func.coalesce(func.sum(case((null_condition, 1), else_=0)), 0),
            distinct_expr,
        ]
        numeric = kind in ("integer", "numeric")
        if numeric:
            aggregates += [func.min(col), func.max(col), func.avg(col)]
        tenant_filter = table.c[TENANT_COLUMN] == organization_id

        # A failing column must not poison the transaction for the others
        scope = db.begin_nested() if is_postgresql(db) else contextlib.nullcontext()
        variance = None
        value_counts: Dict[Any, int] = {}
        async with scope:
            row = (await db.execute(select(*aggregates).select_from(table).where(tenant_filter))).one()

            if numeric and row[4] is not None:
                # Deviations are squared as floats; squaring large BIGINTs overflows
                deviation = cast(col, Float) - literal(float(row[4]), Float)
                variance = (await db.execute(
                    select(func.avg(deviation * deviation))
                    .select_from(table)
                    .where(tenant_filter, col.is_not(None))
                )).scalar_one()

            if kind == "text":
                value_counts = dict((await db.execute(
                    select(col, func.count())
                    .select_from(table)
                    .where(tenant_filter, ~null_condition)
                    .group_by(col)
                )).all())

        null_count, distinct_count = int(row[0]), int(row[1])
        stats: Dict[str, Any] = {
            "physical_column": physical,
            "data_type": kind,
            "total_rows": total_rows,
            "null_count": null_count,
            "distinct_count": distinct_count,
            "duplicate_count": max(total_rows - null_count - distinct_count, 0),
            "completeness": None,
            "uniqueness": None,
        }
        if total_rows > 0:
            stats["completeness"] = 1 - null_count / total_rows
            stats["uniqueness"] = distinct_count / total_rows

        if kind == "text":
            stats.update(consistency_score(value_counts))
        elif total_rows - null_count > 0:
            # Typed columns only ever hold values of their own type
            stats.update({"consistency": 1.0, "dominant_type": kind})
        else:
            stats.update({"consistency": None, "dominant_type": None})

        if numeric and row[4] is not None:
            stats.update({
                "min": float(row[2]),
                "max": float(row[3]),
                "mean": float(row[4]),
                "standard_deviation": math.sqrt(max(float(variance or 0.0), 0.0)),
            })
        return stats

    @staticmethod
    def _resolve_physical_column(table: Table, column: ColumnMetadata) -> str:
        available = data_columns(table)
        for name in (column.original_name, column.display_name):
            if name and physical_column_name(name) in available:
                return physical_column_name(name)
        raise NotFoundError(
            "Column",
            column.original_name,
            message=f"Column '{column.original_name}' not found in table {table.name}",
        )

    def _summarize(self, column_results: Dict[str, Dict[str, Any]], total_rows: int) -> Dict[str, Any]:
        """Aggregate per-column statistics into scores, issues and recommendations."""
        threshold = self.quality_thresholds["completeness"]
        high_threshold = self.quality_thresholds["high_severity"]

        issues = []
        recommendations = []
        format_recommendations = []
        completeness_values = []
        quality_values = []
        consistency_values = []
        integrity_values = []
        for name, stats in column_results.items():
            completeness = stats["completeness"]
            uniqueness = stats["uniqueness"]
            if completeness is None:
                continue
            completeness_values.append(completeness)
            quality_values.append(completeness * COMPLETENESS_WEIGHT + uniqueness * UNIQUENESS_WEIGHT)

            # A column with no values has nothing inconsistent in it
            consistency = stats.get("consistency")
            consistency_values.append(1.0 if consistency is None else consistency)
            integrity_values.append(
                completeness * INTEGRITY_WEIGHTS["completeness"]
                + uniqueness * INTEGRITY_WEIGHTS["uniqueness"]
                + consistency_values[-1] * INTEGRITY_WEIGHTS["consistency"]
            )
            if consistency is not None and consistency < self.quality_thresholds["consistency"]:
                format_recommendations.append({
                    "column": name,
                    "type": "standardize_format",
                    "consistency": consistency,
                    "dominant_type": stats.get("dominant_type"),
                    "message": f"Only {consistency:.1%} of column '{name}' is formatted as {stats.get('dominant_type')}",
                })

            if completeness < threshold:
                issues.append({
                    "column": name,
                    "type": "completeness",
                    "completeness": completeness,
                    "severity": "high" if completeness < high_threshold else "medium",
                    "message": f"Column '{name}' is {completeness:.1%} complete",
                    "recommended_fix": "fill_nulls",
                })
            if self.quality_thresholds["duplicates_min_uniqueness"] < uniqueness < self.quality_thresholds["duplicates_max_uniqueness"]:
                recommendations.append({
                    "column": name,
                    "type": "handle_duplicates",
                    "uniqueness": uniqueness,
                    "message": f"Column '{name}' has {stats['duplicate_count']} duplicate values",
                })

        issues.sort(key=lambda issue: (issue["completeness"], issue["column"]))

        def mean(values):
            return sum(values) / len(values) if values else None

        return {
            "total_rows": total_rows,
            "columns": column_results,
            "overall_completeness": mean(completeness_values),
            "overall_quality": mean(quality_values),
            "overall_consistency": mean(consistency_values),
            "overall_integrity": mean(integrity_values),
            "issues": issues,
            "recommendations": recommendations + format_recommendations,
        }

    @staticmethod
    async def list_analyses(
        db: AsyncSession,
        import_id: int,
        organization_id: Optional[int] = None,
        analysis_type: Optional[str] = None
    ) -> List[DataAnalysis]:
        """List analyses of an import, newest first."""
        await ImportLifecycleService.get_import(db, import_id, organization_id)
        query = select(DataAnalysis).where(DataAnalysis.import_id == import_id)
        if analysis_type:
            query = query.where(DataAnalysis.analysis_type == analysis_type)
        result = await db.execute(query.order_by(DataAnalysis.created_at.desc(), DataAnalysis.id.desc()))
        return list(result.scalars().all())
