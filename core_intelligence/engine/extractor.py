"""
LLM extraction engine.

Owns the prompt templates for structured extraction, project summaries and
sentiment, and the lexical grounding check that drops extracted items with
no support in the source text. Depends only on LLMProviderPort.
"""

from __future__ import annotations

import re
from datetime import date
from typing import Iterable, List, Optional, Set

from core_intelligence.schemas.extraction import (
    ENTITY_TYPES,
    ExtractionResult,
    parse_extraction_payload,
    parse_sentiment_payload,
)
from domain.models import Message, Project, SentimentResult
from ports.llm_provider import LLMProviderPort
from shared_utils.constants import LogScope
from shared_utils.error_handler import CollaboratorError
from shared_utils.logging_utils import ContextualLogger


logger = ContextualLogger(scope=LogScope.EXTRACTOR)

# ---------------------------------------------------------------------------
# Prompt templates
# ---------------------------------------------------------------------------

EXTRACTION_SYSTEM_PROMPT = (
    "You are an expert at extracting project management information from "
    "workplace conversations. You extract tasks, requirements, deadlines, "
    "project names and decisions, and you never invent facts."
)

EXTRACTION_PROMPT = """Analyze the following message and extract project management information.
The message was sent on {reference_date} ({weekday}).

Message:
\"\"\"
{text}
\"\"\"

Return a single JSON object with exactly this structure:
{{
  "entities": [
    {{"type": "{entity_types}", "value": "extracted text", "confidence": 0.0}}
  ],
  "projects": ["project name"],
  "tasks": [
    {{
      "title": "task title",
      "description": "task description or null",
      "assignee": "person name or null",
      "priority": "low|medium|high or null",
      "due_date": "YYYY-MM-DD or null"
    }}
  ],
  "requirements": [
    {{
      "description": "requirement description",
      "category": "functional|non-functional|constraint or null",
      "priority": "low|medium|high or null"
    }}
  ],
  "deadlines": [
    {{"description": "what needs to be done", "date": "YYYY-MM-DD or null"}}
  ],
  "decisions": ["decision"],
  "summary": "1-2 sentence summary of the message"
}}

Rules:
- Only extract information that is explicitly stated or clearly implied in the message.
- Use null for optional fields that are not present. Never guess an assignee or a date.
- Be conservative with confidence scores.
- Use empty lists when nothing of a kind is present.
- Name informal project references in title case (e.g. "the auth module" -> "Auth Module").
- Convert relative dates ("tomorrow", "by Friday", "next week") to absolute dates using the message date.
- Return valid JSON only."""

SUMMARY_SYSTEM_PROMPT = (
    "You are a project management assistant that writes clear, concise "
    "project summaries grounded only in the information provided."
)

SUMMARY_PROMPT = """Based on the following project information, write a concise summary.

Project Name: {name}
Status: {status}
Total Tasks: {task_count}
Total Requirements: {requirement_count}

Recent Messages:
{context}

Cover:
1. Current status and progress
2. Key decisions made
3. Pending tasks and requirements
4. Blockers or concerns mentioned
5. Next steps

Keep the summary to 3-5 paragraphs."""

SENTIMENT_SYSTEM_PROMPT = (
    "Analyze the sentiment of the user's text. Respond with JSON only: "
    '{"sentiment": "positive|negative|neutral", "score": 0.0-1.0}'
)

# ---------------------------------------------------------------------------
# Lexical grounding
# ---------------------------------------------------------------------------

STOPWORDS = frozenset(
    {
        "the", "and", "for", "with", "that", "this", "from", "into", "onto", "our",
        "you", "your", "are", "was", "were", "will", "shall", "should", "must",
        "have", "has", "had", "can", "could", "would", "need", "needs", "task",
        "make", "sure", "about", "all", "any", "its", "not", "but", "per", "via",
    }
)
WORD_PATTERN = re.compile(r"[a-z0-9]+")


def content_words(text: str) -> Set[str]:
    return {w for w in WORD_PATTERN.findall((text or "").lower()) if len(w) >= 3 and w not in STOPWORDS}


def _is_grounded(candidate: str, source_words: Set[str]) -> bool:
    words = content_words(candidate)
    # Nothing checkable (very short titles) passes
    return not words or bool(words & source_words)


def drop_ungrounded(result: ExtractionResult, source_text: str) -> ExtractionResult:
    """Remove tasks and requirements that share no content word with the source."""
    source_words = content_words(source_text)
    tasks = [t for t in result.tasks if _is_grounded(t.title, source_words)]
    requirements = [r for r in result.requirements if _is_grounded(r.description, source_words)]

    dropped = (len(result.tasks) - len(tasks)) + (len(result.requirements) - len(requirements))
    if dropped:
        logger.warning(
            "ungrounded_items_dropped",
            dropped=dropped,
            tasks_kept=len(tasks),
            requirements_kept=len(requirements),
        )
    return result.model_copy(update={"tasks": tasks, "requirements": requirements})


def format_message_context(messages: Iterable[Message]) -> str:
    return "\n\n".join(f"[{m.author_name}]: {m.content}" for m in messages)


class LLMExtractor:
    """Stateless wrapper that turns LLMProviderPort calls into validated results."""

    def __init__(self, llm_provider: LLMProviderPort) -> None:
        self._llm = llm_provider

    def extract(self, text: str, reference_date: Optional[date] = None) -> ExtractionResult:
        """Run structured extraction over one message.

        Raises:
            CollaboratorError: The model failed or returned an invalid payload.
        """
        reference_date = reference_date or date.today()
        prompt = EXTRACTION_PROMPT.format(
            text=text,
            reference_date=reference_date.isoformat(),
            weekday=reference_date.strftime("%A"),
            entity_types="|".join(sorted(ENTITY_TYPES)),
        )
        raw = self._llm.generate(prompt, system_prompt=EXTRACTION_SYSTEM_PROMPT, json_mode=True)
        result = parse_extraction_payload(raw)
        logger.info(
            "extraction_parsed",
            entities=len(result.entities),
            projects=len(result.projects),
            tasks=len(result.tasks),
            requirements=len(result.requirements),
        )
        return drop_ungrounded(result, text)

    def summarize_project(
        self,
        project: Project,
        messages: List[Message],
        task_count: int,
        requirement_count: int,
    ) -> str:
        prompt = SUMMARY_PROMPT.format(
            name=project.name,
            status=project.status,
            task_count=task_count,
            requirement_count=requirement_count,
            context=format_message_context(messages) or "(no messages)",
        )
        summary = (self._llm.generate(prompt, system_prompt=SUMMARY_SYSTEM_PROMPT) or "").strip()
        if not summary:
            raise CollaboratorError("LLM", "empty project summary", context={"project_id": project.id})
        return summary

    def sentiment(self, text: str) -> SentimentResult:
        raw = self._llm.generate(text, system_prompt=SENTIMENT_SYSTEM_PROMPT, json_mode=True)
        return parse_sentiment_payload(raw)
