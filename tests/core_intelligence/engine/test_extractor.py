"""
Tests for the LLM extraction engine: prompts, grounding and fail-fast paths.
"""

import json
from datetime import date, datetime, timezone

import pytest

from core_intelligence.engine.extractor import (
    LLMExtractor,
    content_words,
    drop_ungrounded,
    format_message_context,
)
from core_intelligence.schemas.extraction import parse_extraction_payload
from domain.models import Message, Project, Source
from shared_utils.error_handler import CollaboratorError

SOURCE_TEXT = "Deploy the auth service by Friday, assign to Dana"


def _message(author: str, content: str) -> Message:
    return Message(
        id=f"m-{author}",
        source=Source.SLACK,
        source_id="1.1",
        channel_id="C1",
        author_id="U1",
        author_name=author,
        content=content,
        timestamp=datetime(2025, 1, 15, 9, tzinfo=timezone.utc),
    )


class TestGrounding:
    def test_content_words_skip_short_and_stopwords(self) -> None:
        assert content_words("Make sure the API is up to date") == {"api", "date"}

    def test_ungrounded_items_dropped(self) -> None:
        result = parse_extraction_payload(
            json.dumps(
                {
                    "tasks": [{"title": "Deploy auth service"}, {"title": "Refactor billing ledger"}],
                    "requirements": [{"description": "Quarterly compliance audit"}],
                }
            )
        )

        grounded = drop_ungrounded(result, SOURCE_TEXT)

        assert [t.title for t in grounded.tasks] == ["Deploy auth service"]
        assert grounded.requirements == []

    def test_short_titles_pass(self) -> None:
        result = parse_extraction_payload('{"tasks": [{"title": "Do it"}]}')
        assert len(drop_ungrounded(result, SOURCE_TEXT).tasks) == 1


class TestExtract:
    def test_prompt_carries_text_and_reference_date(self, mock_llm_provider) -> None:
        LLMExtractor(mock_llm_provider).extract(SOURCE_TEXT, reference_date=date(2025, 1, 15))

        prompt = mock_llm_provider.generate.call_args.args[0]
        assert SOURCE_TEXT in prompt
        assert "2025-01-15 (Wednesday)" in prompt
        assert mock_llm_provider.generate.call_args.kwargs["json_mode"] is True

    def test_returns_grounded_result(self, mock_llm_provider) -> None:
        mock_llm_provider.generate.return_value = json.dumps(
            {
                "projects": ["Auth Service"],
                "tasks": [
                    {"title": "Deploy the auth service", "assignee": "Dana", "due_date": "2025-01-17"},
                    {"title": "Migrate payroll database"},
                ],
            }
        )

        result = LLMExtractor(mock_llm_provider).extract(SOURCE_TEXT, reference_date=date(2025, 1, 15))

        assert result.projects == ["Auth Service"]
        assert [t.assignee for t in result.tasks] == ["Dana"]

    def test_invalid_output_raises(self, mock_llm_provider) -> None:
        mock_llm_provider.generate.return_value = "I could not find any tasks."
        with pytest.raises(CollaboratorError):
            LLMExtractor(mock_llm_provider).extract(SOURCE_TEXT)

    def test_provider_failure_propagates(self, mock_llm_provider) -> None:
        mock_llm_provider.generate.side_effect = CollaboratorError("OpenAI", "timeout")
        with pytest.raises(CollaboratorError):
            LLMExtractor(mock_llm_provider).extract(SOURCE_TEXT)


class TestSummaryAndSentiment:
    def test_summary_prompt(self, mock_llm_provider) -> None:
        mock_llm_provider.generate.return_value = "  Auth is on track.  "
        project = Project(id="p1", name="Auth Service")

        summary = LLMExtractor(mock_llm_provider).summarize_project(
            project, [_message("Alice", "Kickoff"), _message("Bob", "Ship Friday")], task_count=2, requirement_count=1
        )

        assert summary == "Auth is on track."
        prompt = mock_llm_provider.generate.call_args.args[0]
        assert "Project Name: Auth Service" in prompt
        assert "Total Tasks: 2" in prompt
        assert "[Alice]: Kickoff\n\n[Bob]: Ship Friday" in prompt

    def test_empty_summary_raises(self, mock_llm_provider) -> None:
        mock_llm_provider.generate.return_value = "   "
        with pytest.raises(CollaboratorError):
            LLMExtractor(mock_llm_provider).summarize_project(Project(id="p1", name="X"), [], 0, 0)

    def test_sentiment(self, mock_llm_provider) -> None:
        mock_llm_provider.generate.return_value = '{"sentiment": "positive", "score": 0.9}'

        result = LLMExtractor(mock_llm_provider).sentiment("Great work, team")

        assert result.label == "positive"
        assert mock_llm_provider.generate.call_args.args[0] == "Great work, team"

    def test_format_message_context_empty(self) -> None:
        assert format_message_context([]) == ""
