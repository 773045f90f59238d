"""
Column profiling service over the staging store.
"""
import math
from collections import Counter
from typing import Any, Dict, List, Optional

import numpy as np
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NotFoundError
from app.core.logging import get_logger
from app.services.import_lifecycle import ImportLifecycleService
from app.services.ingestion import IngestionService

logger = get_logger(__name__)

MODE_SIZE = 3
QUARTILE_POINTS = (0.25, 0.5, 0.75)


def is_null(value: Any) -> bool:
    return value is None or value == ""


def _to_finite_float(value: Any) -> Optional[float]:
    """Parse a staged cell as a number, or None when it is not one."""
    if isinstance(value, bool) or is_null(value):
        return None
    try:
        number = float(str(value).strip())
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


class ColumnStatisticsAccumulator:
    """Collects one column's values across pages of staged rows."""

    def __init__(self):
        self.count = 0
        self.null_count = 0
        self.distribution: Counter = Counter()
        self.numeric_values: List[float] = []

    def add(self, value: Any) -> None:
        self.count += 1
        if is_null(value):
            self.null_count += 1
        self.distribution["" if value is None else str(value)] += 1

        number = _to_finite_float(value)
        if number is not None:
            self.numeric_values.append(number)

    def result(self) -> Dict[str, Any]:
        """
        Build the statistics payload.

        ``distinct_count`` counts distinct raw values, the empty value included.
        Percentiles use the nearest-rank index ``floor(n * p)`` over the sorted
        numeric values; the standard deviation is the population one.
        """
        stats: Dict[str, Any] = {
            "count": self.count,
            "distinct_count": len(self.distribution),
            "null_count": self.null_count,
            "completeness": None,
            "uniqueness": None,
            "min": None,
            "max": None,
            "mean": None,
            "median": None,
            "quartiles": None,
            "standard_deviation": None,
        }
        if self.count > 0:
            stats["completeness"] = 1 - self.null_count / self.count
            stats["uniqueness"] = len(self.distribution) / self.count

        if self.numeric_values:
            ordered = np.sort(np.asarray(self.numeric_values, dtype=float))
            n = len(ordered)
            stats.update({
                "min": float(ordered[0]),
                "max": float(ordered[-1]),
                "mean": float(ordered.mean()),
                "median": float(ordered[math.floor(n * 0.5)]),
                "quartiles": [float(ordered[math.floor(n * p)]) for p in QUARTILE_POINTS],
                "standard_deviation": float(ordered.std()),
            })

        # sorted() is stable, so equal frequencies keep encounter order
        ranked = sorted(self.distribution.items(), key=lambda item: item[1], reverse=True)
        stats["mode"] = [value for value, _ in ranked[:MODE_SIZE]]
        stats["distribution"] = dict(self.distribution)
        return stats


class ColumnProfilerService:
    """Service for computing per-column statistics."""

    @staticmethod
    async def compute_column_statistics(
        db: AsyncSession,
        import_id: int,
        column_name: str,
        organization_id: Optional[int] = None,
        page_size: Optional[int] = None
    ) -> Dict[str, Any]:
        """
        Compute statistics for one column of a staged import.

        The column may be given by its original or display name. Nothing is
        persisted here.

        Raises:
            NotFoundError: If the import or column does not exist
        """
        await ImportLifecycleService.get_import(db, import_id, organization_id)
        columns = await ImportLifecycleService.get_columns(db, import_id)
        column = next((c for c in columns if c.original_name == column_name), None)
        if column is None:
            column = next((c for c in columns if c.display_name == column_name), None)
        if column is None:
            raise NotFoundError("Column", column_name)

        accumulator = ColumnStatisticsAccumulator()
        async for rows in IngestionService.iter_staged_rows(db, import_id, page_size):
            for row in rows:
                accumulator.add(row.get(column.original_name))

        stats = accumulator.result()
        logger.info(
            f"Computed statistics for column {column.original_name} of import {import_id}",
            extra={"import_id": import_id, "count": stats["count"], "null_count": stats["null_count"]},
        )
        return stats
