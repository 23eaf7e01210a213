"""Normalization of oracle responses into a tagged result."""

import json
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Optional, Tuple

from .errors import MalformedResponse, ValidationError

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^\s*```[a-zA-Z0-9_-]*\s*\n?(.*?)\n?\s*```\s*$", re.DOTALL)
_ARRAY_RE = re.compile(r"\[[\s\S]*\]")
_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


class ResultKind(str, Enum):
    OK = "ok"
    MALFORMED = "malformed"
    INVALID = "invalid"


@dataclass(frozen=True)
class OracleResult:
    """Outcome of normalizing one oracle response."""

    kind: ResultKind
    value: Any = None
    error: Optional[str] = None
    raw: str = ""
    missing: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return self.kind == ResultKind.OK

    def unwrap(self) -> Any:
        """Return the value or raise the error matching the result kind."""
        if self.kind == ResultKind.MALFORMED:
            raise MalformedResponse(self.error or "Malformed oracle response", raw=self.raw)
        if self.kind == ResultKind.INVALID:
            raise ValidationError(
                self.error or "Oracle response failed validation", missing=self.missing
            )
        return self.value


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code fence, if any."""
    if not text:
        return ""
    match = _FENCE_RE.match(text)
    if match:
        return match.group(1).strip()
    return text.strip()


def _structural_reparse(text: str, expect: str) -> Any:
    """Second and last parse attempt: pull the outermost JSON span out of prose."""
    patterns = (_ARRAY_RE, _OBJECT_RE) if expect == "array" else (_OBJECT_RE, _ARRAY_RE)
    for pattern in patterns:
        match = pattern.search(text)
        if match:
            return json.loads(match.group(0))
    raise ValueError("No JSON span found")


def _coerce_shape(value: Any, expect: str) -> Any:
    if expect == "array":
        if isinstance(value, list):
            return value
        if isinstance(value, dict):
            lists = [v for v in value.values() if isinstance(v, list)]
            if len(lists) == 1:
                return lists[0]
            return [value]
        raise ValueError(f"Expected array, got {type(value).__name__}")

    if isinstance(value, dict):
        return value
    if isinstance(value, list) and len(value) == 1 and isinstance(value[0], dict):
        return value[0]
    raise ValueError(f"Expected object, got {type(value).__name__}")


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str) and not value.strip():
        return True
    if isinstance(value, (list, dict)) and not value:
        return True
    return False


def normalize_response(
    raw: Optional[str], expect: str = "object", required: Iterable[str] = ()
) -> OracleResult:
    """Normalize raw oracle output.

    Args:
        raw: Response text as returned by the oracle
        expect: ``"object"``, ``"array"`` or ``"text"``
        required: Keys that must be present and non-empty (objects only)

    Returns:
        OracleResult tagged ok, malformed or invalid
    """
    raw = raw or ""
    text = strip_code_fences(raw)

    if expect == "text":
        cleaned = text.strip().strip('"').strip("'").strip()
        if not cleaned:
            return OracleResult(ResultKind.INVALID, error="Empty text response", raw=raw)
        return OracleResult(ResultKind.OK, value=cleaned, raw=raw)

    try:
        parsed = json.loads(text)
    except (ValueError, TypeError):
        try:
            parsed = _structural_reparse(text, expect)
            logger.debug("Oracle response recovered by structural re-parse")
        except (ValueError, TypeError) as e:
            return OracleResult(
                ResultKind.MALFORMED, error=f"Unparseable oracle response: {e}", raw=raw
            )

    try:
        value = _coerce_shape(parsed, expect)
    except ValueError as e:
        return OracleResult(ResultKind.MALFORMED, error=str(e), raw=raw)

    required = tuple(required)
    if required and isinstance(value, dict):
        missing = tuple(key for key in required if _is_empty(value.get(key)))
        if missing:
            return OracleResult(
                ResultKind.INVALID,
                value=value,
                error=f"Missing required fields: {', '.join(missing)}",
                raw=raw,
                missing=missing,
            )

    return OracleResult(ResultKind.OK, value=value, raw=raw)
