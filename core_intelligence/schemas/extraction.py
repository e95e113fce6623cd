"""
Boundary schemas for language-model output.

Raw model text is parsed and validated here before anything touches the
store. Shape violations raise CollaboratorError so the job queue retries
the extraction. Absent optional values are normalized to None.
"""

from __future__ import annotations

import json
import re
from datetime import date, datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from domain.models import Priority, RequirementCategory, SentimentResult
from shared_utils.error_handler import CollaboratorError


ABSENT_MARKERS = frozenset({"", "null", "none", "n/a", "na", "unknown", "tbd"})
ENTITY_TYPES = frozenset({"project", "task", "deadline", "requirement", "decision", "person"})
SENTIMENT_LABELS = frozenset({"positive", "negative", "neutral"})

CODE_FENCE_PATTERN = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL | re.IGNORECASE)


def _absent_to_none(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, str) and value.strip().lower() in ABSENT_MARKERS:
        return None
    if isinstance(value, str):
        return value.strip()
    return value


def _parse_date(value: Any) -> Optional[date]:
    value = _absent_to_none(value)
    if value is None:
        return None
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return datetime.strptime(value[:10], "%Y-%m-%d").date()
        except ValueError:
            return None
    return None


def _unit_interval(value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValueError(f"expected a number, got {type(value).__name__}") from None
    return max(0.0, min(1.0, number))

class _Strict(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)


class ExtractedEntity(_Strict):
    type: str = Field(min_length=1)
    value: str = Field(min_length=1)
    confidence: float = 0.5

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, v: Any) -> float:
        v = _absent_to_none(v)
        if v is None:
            return 0.5
        return _unit_interval(v)


class ExtractedTask(_Strict):
    title: str = Field(min_length=1)
    description: Optional[str] = None
    assignee: Optional[str] = None
    priority: Priority = Priority.MEDIUM
    due_date: Optional[date] = None

    @field_validator("description", "assignee", mode="before")
    @classmethod
    def absent_optional(cls, v: Any) -> Any:
        return _absent_to_none(v)

    @field_validator("priority", mode="before")
    @classmethod
    def default_priority(cls, v: Any) -> Any:
        v = _absent_to_none(v)
        if isinstance(v, str) and v.lower() in {p.value for p in Priority}:
            return v.lower()
        return Priority.MEDIUM

    @field_validator("due_date", mode="before")
    @classmethod
    def parse_due_date(cls, v: Any) -> Optional[date]:
        return _parse_date(v)


class ExtractedRequirement(_Strict):
    description: str = Field(min_length=1)
    category: RequirementCategory = RequirementCategory.FUNCTIONAL
    priority: Priority = Priority.MEDIUM

    @field_validator("category", mode="before")
    @classmethod
    def default_category(cls, v: Any) -> Any:
        v = _absent_to_none(v)
        if isinstance(v, str):
            v = v.lower().replace("_", "-").replace(" ", "-")
            if v in {c.value for c in RequirementCategory}:
                return v
        return RequirementCategory.FUNCTIONAL

    @field_validator("priority", mode="before")
    @classmethod
    def default_priority(cls, v: Any) -> Any:
        v = _absent_to_none(v)
        if isinstance(v, str) and v.lower() in {p.value for p in Priority}:
            return v.lower()
        return Priority.MEDIUM


class ExtractedDeadline(_Strict):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True, populate_by_name=True)

    description: str = Field(min_length=1)
    due_on: Optional[date] = Field(default=None, alias="date")

    @field_validator("due_on", mode="before")
    @classmethod
    def parse_deadline_date(cls, v: Any) -> Optional[date]:
        return _parse_date(v)


class ExtractionResult(_Strict):
    """Validated structured extraction for one message."""

    entities: List[ExtractedEntity] = []
    projects: List[str] = []
    tasks: List[ExtractedTask] = []
    requirements: List[ExtractedRequirement] = []
    deadlines: List[ExtractedDeadline] = []
    decisions: List[str] = []
    summary: Optional[str] = None

    @field_validator("entities", "tasks", "requirements", "deadlines", "projects", "decisions", mode="before")
    @classmethod
    def null_list(cls, v: Any) -> Any:
        return [] if v is None else v

    @field_validator("projects", "decisions")
    @classmethod
    def dedupe_names(cls, v: List[str]) -> List[str]:
        seen = set()
        result = []
        for item in v:
            item = _absent_to_none(item)
            if not item or item.lower() in seen:
                continue
            seen.add(item.lower())
            result.append(item)
        return result

    @field_validator("summary", mode="before")
    @classmethod
    def absent_summary(cls, v: Any) -> Any:
        return _absent_to_none(v)


class SentimentPayload(_Strict):
    sentiment: str
    score: float

    @field_validator("sentiment", mode="before")
    @classmethod
    def known_label(cls, v: Any) -> str:
        if not isinstance(v, str) or v.strip().lower() not in SENTIMENT_LABELS:
            raise ValueError(f"sentiment must be one of {sorted(SENTIMENT_LABELS)}")
        return v.strip().lower()

    @field_validator("score", mode="before")
    @classmethod
    def clamp_score(cls, v: Any) -> float:
        return _unit_interval(v)


# ---------------------------------------------------------------------------
# Parsing entry points
# ---------------------------------------------------------------------------


def _load_json_object(raw: str, service: str) -> dict:
    if raw is None or not raw.strip():
        raise CollaboratorError(service, "empty response")
    text = raw.strip()
    fenced = CODE_FENCE_PATTERN.match(text)
    if fenced:
        text = fenced.group(1)
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise CollaboratorError(service, "response was not valid JSON", context={"error": str(exc)}) from exc
    if not isinstance(data, dict):
        raise CollaboratorError(service, "response JSON was not an object", context={"type": type(data).__name__})
    return data


def parse_extraction_payload(raw: str) -> ExtractionResult:
    """Validate raw model output into an ExtractionResult.

    Raises:
        CollaboratorError: Output is not JSON or does not match the schema.
    """
    data = _load_json_object(raw, "LLM")
    try:
        return ExtractionResult.model_validate(data)
    except ValidationError as exc:
        raise CollaboratorError(
            "LLM",
            "extraction did not match the expected schema",
            context={"errors": exc.error_count(), "first": exc.errors()[0]["msg"]},
        ) from exc


def parse_sentiment_payload(raw: str) -> SentimentResult:
    data = _load_json_object(raw, "LLM")
    try:
        payload = SentimentPayload.model_validate(data)
    except (ValidationError, TypeError, ValueError) as exc:
        raise CollaboratorError("LLM", "sentiment did not match the expected schema") from exc
    return SentimentResult(label=payload.sentiment, score=payload.score)
