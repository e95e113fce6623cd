"""
Tests for the language-model output boundary schemas.
"""

import json
from datetime import date

import pytest

from core_intelligence.schemas.extraction import parse_extraction_payload, parse_sentiment_payload
from domain.models import Priority, RequirementCategory
from shared_utils.error_handler import CollaboratorError


class TestParseExtractionPayload:
    def test_full_payload(self) -> None:
        raw = json.dumps(
            {
                "entities": [{"type": "Person", "value": "Dana", "confidence": 0.9}],
                "projects": ["Auth Service"],
                "tasks": [
                    {
                        "title": "Deploy the auth service",
                        "assignee": "Dana",
                        "priority": "HIGH",
                        "due_date": "2025-01-17",
                    }
                ],
                "requirements": [{"description": "Support SSO", "category": "non functional"}],
                "deadlines": [{"description": "Auth launch", "date": "2025-01-17T17:00:00"}],
                "decisions": ["Use Postgres"],
                "summary": "Dana deploys auth on Friday.",
            }
        )

        result = parse_extraction_payload(raw)

        assert result.entities[0].type == "person"
        assert result.tasks[0].priority == Priority.HIGH
        assert result.tasks[0].due_date == date(2025, 1, 17)
        assert result.requirements[0].category == RequirementCategory.NON_FUNCTIONAL
        assert result.deadlines[0].due_on == date(2025, 1, 17)
        assert result.summary == "Dana deploys auth on Friday."

    def test_code_fence_is_stripped(self) -> None:
        raw = '```json\n{"projects": ["Billing"]}\n```'
        assert parse_extraction_payload(raw).projects == ["Billing"]

    def test_absent_markers_become_none(self) -> None:
        raw = json.dumps(
            {"tasks": [{"title": "Write docs", "assignee": "N/A", "due_date": "TBD", "priority": "whenever"}]}
        )

        task = parse_extraction_payload(raw).tasks[0]

        assert task.assignee is None
        assert task.due_date is None
        assert task.priority == Priority.MEDIUM

    def test_null_lists_and_defaults(self) -> None:
        result = parse_extraction_payload('{"tasks": null, "entities": [{"type": "project", "value": "X"}]}')

        assert result.tasks == []
        assert result.entities[0].confidence == 0.5

    def test_entity_confidence_clamped(self) -> None:
        result = parse_extraction_payload('{"entities": [{"type": "task", "value": "x", "confidence": 7}]}')
        assert result.entities[0].confidence == 1.0

    def test_unknown_category_defaults_to_functional(self) -> None:
        result = parse_extraction_payload('{"requirements": [{"description": "Fast", "category": "vibes"}]}')
        assert result.requirements[0].category == RequirementCategory.FUNCTIONAL

    def test_projects_deduplicated_case_insensitively(self) -> None:
        result = parse_extraction_payload('{"projects": ["Billing", "billing ", "null", "Auth"]}')
        assert result.projects == ["Billing", "Auth"]

    @pytest.mark.parametrize(
        "raw",
        [
            "",
            "Sure! Here are the tasks.",
            "[1, 2, 3]",
            '{"tasks": [{"assignee": "Dana"}]}',
            '{"tasks": "deploy"}',
            '{"entities": [{"type": "person", "value": "Dana", "confidence": {"x": 1}}]}',
            '{"entities": [{"type": "person", "value": "Dana", "confidence": [0.9]}]}',
            '{"entities": [{"type": "person", "value": "Dana", "confidence": "high"}]}',
        ],
    )
    def test_invalid_output_raises(self, raw) -> None:
        with pytest.raises(CollaboratorError):
            parse_extraction_payload(raw)


class TestParseSentimentPayload:
    def test_valid(self) -> None:
        result = parse_sentiment_payload('{"sentiment": "Negative", "score": 0.3}')
        assert result.label == "negative"
        assert result.score == 0.3

    def test_score_clamped(self) -> None:
        assert parse_sentiment_payload('{"sentiment": "neutral", "score": -2}').score == 0.0

    @pytest.mark.parametrize(
        "raw",
        [
            '{"sentiment": "ecstatic", "score": 0.9}',
            '{"sentiment": "positive"}',
            '{"sentiment": "positive", "score": {"v": 1}}',
            "positive",
        ],
    )
    def test_invalid(self, raw) -> None:
        with pytest.raises(CollaboratorError):
            parse_sentiment_payload(raw)
