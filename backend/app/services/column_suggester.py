"""
Column name and description suggester backed by Azure OpenAI chat completions.

Suggestions are advisory: callers catch ``SuggestionError`` and carry on
without them.
"""
import asyncio
import json
import re
from typing import Any, Dict, List, Optional

import httpx

from app.core.config import settings
from app.core.exceptions import SuggestionError
from app.core.logging import get_logger
from app.core.metrics import suggestions_total

logger = get_logger(__name__)

COLUMN_NAME_MAX_LENGTH = 63
COLUMN_NAME_PATTERN = re.compile(r"^[a-z_][a-z0-9_]*$")
POSTGRESQL_RESERVED_WORDS = {
    "select", "from", "where", "table", "index", "primary", "key", "foreign",
    "references", "constraint", "unique", "check", "default", "order", "by",
    "group", "having", "limit", "offset", "union", "case", "when", "then",
    "else", "end", "create", "alter", "drop", "update", "delete", "insert",
    "into", "values", "user", "password", "grant", "revoke", "column", "row",
}

SYSTEM_PROMPT = (
    "You are a data analysis and PostgreSQL expert who suggests clear, "
    "conventional column names for database tables."
)

_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$")


def validate_column_name(name: str) -> Optional[str]:
    """
    Check a suggested column name.

    Returns:
        Reason the name is invalid, or None when it is acceptable
    """
    if len(name) > COLUMN_NAME_MAX_LENGTH:
        return f"Name is longer than {COLUMN_NAME_MAX_LENGTH} characters"
    if not COLUMN_NAME_PATTERN.match(name):
        return "Name must use lowercase letters, digits and underscore, and start with a letter or underscore"
    if name.lower() in POSTGRESQL_RESERVED_WORDS:
        return "Name is a PostgreSQL reserved word"
    return None


def repair_column_name(name: str) -> str:
    repaired = re.sub(r"[^a-z0-9_]", "_", name.lower())
    if repaired[:1].isdigit():
        repaired = f"_{repaired}"
    return repaired[:COLUMN_NAME_MAX_LENGTH]


def _optional_text(value: Any) -> Optional[str]:
    # Model output is untrusted; only scalars are kept as text
    if value is None or isinstance(value, (dict, list)):
        return None
    return str(value).strip() or None


class ColumnSuggester:
    """Client for the column name suggestion model."""

    DEFAULT_TEMPERATURE = 0.7
    DEFAULT_MAX_TOKENS = 800

    def __init__(
        self,
        api_key: Optional[str] = None,
        endpoint: Optional[str] = None,
        deployment: Optional[str] = None,
        api_version: Optional[str] = None,
        timeout: Optional[float] = None,
        retry_count: int = 1,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.api_key = api_key or settings.AZURE_OPENAI_API_KEY
        self.endpoint = (endpoint or settings.AZURE_OPENAI_ENDPOINT or "").rstrip("/")
        self.deployment = deployment or settings.AZURE_OPENAI_DEPLOYMENT
        self.api_version = api_version or settings.AZURE_OPENAI_API_VERSION
        self.timeout = timeout or settings.SUGGESTER_TIMEOUT_SECONDS
        self.retry_count = retry_count
        self.transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.endpoint and self.deployment)

    @property
    def url(self) -> str:
        return f"{self.endpoint}/openai/deployments/{self.deployment}/chat/completions"

    def build_prompt(
        self,
        columns: List[Dict[str, Any]],
        description: Optional[str] = None,
        sample_data: Optional[List[Dict[str, Any]]] = None
    ) -> str:
        lines = []
        for column in columns:
            name = column["name"]
            samples = column.get("sample") or [row.get(name) for row in (sample_data or [])[:3]]
            rendered = ", ".join("" if value is None else str(value) for value in samples[:3])
            lines.append(f"{name} ({column.get('type', 'text')}): {rendered}")

        return (
            "Suggest names for the columns of a PostgreSQL table.\n\n"
            "Rules for column names:\n"
            "1. Lowercase snake_case only\n"
            "2. Start with a letter or underscore, never a digit\n"
            "3. Only the characters a-z, 0-9 and _\n"
            f"4. At most {COLUMN_NAME_MAX_LENGTH} characters\n"
            "5. Avoid PostgreSQL reserved words such as select, from, where, table\n"
            "6. Be concise but descriptive\n\n"
            f"Dataset description: {description or 'not provided'}\n\n"
            "Original columns with example values:\n"
            + "\n".join(lines)
            + "\n\nReturn only a JSON array with one object per column:\n"
            '[{"original_name": "...", "suggested_name": "...", "type": "...", "description": "..."}]'
        )

    async def _complete(self, prompt: str) -> str:
        """Send one chat completion request and return the message content."""
        body = {
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "temperature": self.DEFAULT_TEMPERATURE,
            "max_tokens": self.DEFAULT_MAX_TOKENS,
            "top_p": 0.95,
        }
        headers = {"Content-Type": "application/json", "api-key": self.api_key}

        last_exception = None
        for attempt in range(self.retry_count + 1):
            try:
                async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                    response = await client.post(
                        self.url,
                        params={"api-version": self.api_version},
                        headers=headers,
                        json=body,
                    )
                    response.raise_for_status()
                    data = response.json()
                break
            except httpx.HTTPStatusError as e:
                # Client errors are not retried
                if 400 <= e.response.status_code < 500:
                    logger.error(f"Suggester request rejected: {e.response.status_code} {e.response.text[:500]}")
                    raise SuggestionError(
                        f"Suggestion service rejected the request ({e.response.status_code})",
                        details={"status_code": e.response.status_code},
                    ) from e
                last_exception = e
                logger.warning(f"Suggester HTTP error (attempt {attempt + 1}/{self.retry_count + 1}): {e}")
            except httpx.RequestError as e:
                last_exception = e
                logger.warning(f"Suggester request failed (attempt {attempt + 1}/{self.retry_count + 1}): {e}")
            except ValueError as e:
                raise SuggestionError("Suggestion service returned invalid JSON") from e

            if attempt < self.retry_count:
                await asyncio.sleep(attempt + 1)
        else:
            raise SuggestionError(f"Suggestion service unavailable: {last_exception}") from last_exception

        try:
            return data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise SuggestionError("Invalid response format from suggestion service") from e

    def parse_suggestions(self, content: Any) -> List[Dict[str, Any]]:
        """
        Parse the model output and validate every suggested name.

        Invalid names are repaired and flagged with ``needs_review``.
        """
        if isinstance(content, str):
            try:
                content = json.loads(_CODE_FENCE.sub("", content.strip()))
            except json.JSONDecodeError as e:
                raise SuggestionError("Failed to process suggestion response") from e
        if isinstance(content, dict):
            content = content.get("suggestions")
        if not isinstance(content, list):
            raise SuggestionError("Suggestion response is not a list")

        processed = []
        for item in content:
            if not isinstance(item, dict):
                continue
            original_name = item.get("original_name")
            if not isinstance(original_name, str) or not original_name:
                continue
            suggested = item.get("suggested_name")
            if not isinstance(suggested, str) or not suggested:
                suggested = original_name
            reason = validate_column_name(suggested)
            if reason:
                suggested = repair_column_name(suggested)
            processed.append({
                "original_name": original_name,
                "suggested_name": suggested,
                "type": _optional_text(item.get("type")) or "text",
                "description": _optional_text(item.get("description")),
                "needs_review": reason is not None,
                "validation_message": reason,
            })
        return processed

    async def suggest(
        self,
        columns: List[Dict[str, Any]],
        description: Optional[str] = None,
        sample_data: Optional[List[Dict[str, Any]]] = None
    ) -> List[Dict[str, Any]]:
        """
        Suggest display names and descriptions for columns.

        Args:
            columns: ``{name, type, sample}`` records
            description: Free-text description of the dataset
            sample_data: Optional rows used when a column has no samples

        Returns:
            ``{original_name, suggested_name, type, description, needs_review,
            validation_message}`` records

        Raises:
            SuggestionError: If the service is unconfigured or the call fails
        """
        if not self.configured:
            suggestions_total.labels(status="unconfigured").inc()
            raise SuggestionError("Column suggester is not configured", code="SUGGESTER_UNCONFIGURED")

        logger.info(f"Requesting column suggestions for {len(columns)} columns")
        try:
            content = await self._complete(self.build_prompt(columns, description, sample_data))
            suggestions = self.parse_suggestions(content)
        except SuggestionError:
            suggestions_total.labels(status="error").inc()
            raise

        suggestions_total.labels(status="success").inc()
        logger.info(
            f"Received {len(suggestions)} column suggestions",
            extra={"needs_review": sum(1 for s in suggestions if s["needs_review"])},
        )
        return suggestions


def get_column_suggester() -> ColumnSuggester:
    return ColumnSuggester()
