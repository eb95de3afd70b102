"""
Task extraction: prompt template, AI extraction client and sanitization.

The client returns the AI response structurally as received (RawExtraction).
sanitize_tasks() is the only way raw tasks become SanitizedTask records.
"""
import logging
from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI

from config import ExtractionConfig
from errors import ExtractionServiceError
from llm.openai_client import create_client, generate_json
from models import (
    DEFAULT_PRIORITY,
    NO_SUMMARY,
    PRIORITIES,
    UNTITLED_TASK,
    RawExtractedTask,
    RawExtraction,
    SanitizedTask,
)

logger = logging.getLogger(__name__)

EXTRACTION_SYSTEM_PROMPT = """You are an expert task extraction assistant. Analyze the provided communication text and extract actionable tasks.

For each task, determine:
1. A clear, concise title (action-oriented)
2. A brief description (context from the original text)
3. Priority level (high/medium/low based on urgency indicators)
4. Assignee if mentioned
5. Due date if specified (return in ISO 8601 format)
6. Relevant tags (categories, topics, or keywords)

Also provide a brief summary of the communication.

Respond with JSON in this exact format:
{
  "summary": "Brief summary of the communication",
  "tasks": [
    {
      "title": "Task title",
      "description": "Task description with context",
      "priority": "high|medium|low",
      "assignee": "Person name or null",
      "dueDate": "ISO date string or null",
      "tags": ["tag1", "tag2"]
    }
  ]
}

If the communication contains no actionable tasks, return an empty "tasks" array."""


def build_user_prompt(raw_text: str) -> str:
    return f"Extract actionable tasks from this communication:\n\n{raw_text}"


class TaskExtractionClient:
    """Wraps the extraction prompt and one JSON completion call per extract()."""

    def __init__(self, config: ExtractionConfig, client: Optional[AsyncOpenAI] = None):
        self.config = config
        self._client = client

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = create_client(self.config.api_key, self.config.timeout_seconds)
        return self._client

    async def extract(self, raw_text: str) -> RawExtraction:
        """
        Send raw_text to the AI service and return its parsed response.

        The caller is responsible for rejecting blank text.

        Raises:
            ExtractionServiceError: the call failed or the response is not a JSON object
        """
        payload = await generate_json(
            system_prompt=EXTRACTION_SYSTEM_PROMPT,
            user_prompt=build_user_prompt(raw_text),
            client=self._get_client(),
            model=self.config.model,
            temperature=self.config.temperature,
            max_tokens=self.config.max_tokens,
        )
        if not isinstance(payload, dict):
            logger.error(f"AI response is JSON but not an object: {type(payload).__name__}")
            raise ExtractionServiceError("AI service returned JSON that is not an object")
        return RawExtraction.model_validate(payload)


def _as_mapping(item: Any) -> Dict[str, Any]:
    """Read a raw task as a dict. Models are dumped by alias so dueDate keeps its wire name."""
    if isinstance(item, (RawExtractedTask, SanitizedTask)):
        return item.model_dump(by_alias=True)
    if isinstance(item, dict):
        return item
    return {}


def _non_blank_string(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value
    return None


def sanitize_task(raw: Any) -> SanitizedTask:
    """
    Coerce one untrusted task into the task schema.

    Never raises: every field falls back to its default independently.
    """
    data = _as_mapping(raw)

    description = data.get("description")
    priority = data.get("priority")
    tags = data.get("tags")

    return SanitizedTask(
        title=_non_blank_string(data.get("title")) or UNTITLED_TASK,
        description=description if isinstance(description, str) else "",
        priority=priority if isinstance(priority, str) and priority in PRIORITIES else DEFAULT_PRIORITY,
        assignee=_non_blank_string(data.get("assignee")),
        due_date=_non_blank_string(data.get("dueDate")),
        tags=[tag for tag in tags if isinstance(tag, str)] if isinstance(tags, list) else [],
    )


def sanitize_tasks(raw_tasks: Any) -> List[SanitizedTask]:
    """Sanitize a raw task list, preserving order. Anything that is not a list yields []."""
    if not isinstance(raw_tasks, list):
        if raw_tasks is not None:
            logger.warning(f"AI 'tasks' field is {type(raw_tasks).__name__}, expected list; treating as empty")
        return []
    return [sanitize_task(item) for item in raw_tasks]


def sanitize_summary(summary: Any) -> str:
    return _non_blank_string(summary) or NO_SUMMARY
