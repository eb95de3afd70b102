"""
Unit tests for the AI extraction client and the sanitizer.
"""
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from openai import OpenAIError

from config import ExtractionConfig
from errors import ExtractionServiceError
from models import RawExtractedTask, RawExtraction, SanitizedTask
from task_extraction import (
    EXTRACTION_SYSTEM_PROMPT,
    TaskExtractionClient,
    build_user_prompt,
    sanitize_summary,
    sanitize_task,
    sanitize_tasks,
)


def make_openai_client(content=None, error=None):
    """Fake AsyncOpenAI whose chat.completions.create returns `content` or raises `error`."""
    client = MagicMock()
    if error is not None:
        client.chat.completions.create = AsyncMock(side_effect=error)
    else:
        response = SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])
        client.chat.completions.create = AsyncMock(return_value=response)
    return client


def make_extractor(openai_client):
    config = ExtractionConfig(api_key="sk-test", model="gpt-4o-mini", temperature=0.1, max_tokens=500)
    return TaskExtractionClient(config, client=openai_client)


class TestSanitizeTask:
    def test_valid_task_kept_as_is(self):
        task = sanitize_task({
            "title": "Send report",
            "description": "Quarterly numbers",
            "priority": "high",
            "assignee": "Dana",
            "dueDate": "2024-05-01T12:00:00Z",
            "tags": ["finance", "q2"],
        })
        assert task.title == "Send report"
        assert task.description == "Quarterly numbers"
        assert task.priority == "high"
        assert task.assignee == "Dana"
        assert task.due_date == "2024-05-01T12:00:00Z"
        assert task.tags == ["finance", "q2"]

    def test_empty_title_becomes_untitled(self):
        assert sanitize_task({"title": ""}).title == "Untitled task"

    def test_whitespace_title_becomes_untitled(self):
        assert sanitize_task({"title": "   "}).title == "Untitled task"

    def test_non_string_title_becomes_untitled(self):
        assert sanitize_task({"title": 42}).title == "Untitled task"

    def test_unknown_priority_defaults_to_medium(self):
        assert sanitize_task({"title": "x", "priority": "urgent"}).priority == "medium"

    def test_priority_is_case_sensitive(self):
        assert sanitize_task({"title": "x", "priority": "HIGH"}).priority == "medium"

    def test_tags_string_becomes_empty_list(self):
        assert sanitize_task({"title": "x", "tags": "not-a-list"}).tags == []

    def test_non_string_tags_are_dropped(self):
        assert sanitize_task({"title": "x", "tags": ["a", 1, None, "b"]}).tags == ["a", "b"]

    def test_non_string_description_becomes_empty(self):
        assert sanitize_task({"title": "x", "description": {"text": "hi"}}).description == ""

    def test_empty_assignee_and_due_date_are_absent(self):
        task = sanitize_task({"title": "x", "assignee": "", "dueDate": ""})
        assert task.assignee is None
        assert task.due_date is None

    def test_non_object_element_gets_all_defaults(self):
        task = sanitize_task("just a string")
        assert task == SanitizedTask(title="Untitled task")
        assert task.priority == "medium"
        assert task.tags == []

    def test_raw_model_input(self):
        raw = RawExtractedTask.model_validate({"title": "Call Tom", "dueDate": "2024-06-01", "priority": "low"})
        task = sanitize_task(raw)
        assert task.title == "Call Tom"
        assert task.due_date == "2024-06-01"
        assert task.priority == "low"


class TestSanitizeTasks:
    def test_preserves_count_and_order(self):
        raw = [{"title": f"Task {i}"} for i in range(5)]
        assert [t.title for t in sanitize_tasks(raw)] == [f"Task {i}" for i in range(5)]

    def test_one_bad_element_does_not_fail_batch(self):
        result = sanitize_tasks([{"title": "Good"}, None, 7, {"title": "Also good"}])
        assert [t.title for t in result] == ["Good", "Untitled task", "Untitled task", "Also good"]

    def test_non_list_tasks_becomes_empty(self):
        assert sanitize_tasks({"title": "not a list"}) == []
        assert sanitize_tasks("tasks") == []
        assert sanitize_tasks(None) == []

    def test_zero_tasks_is_valid(self):
        assert sanitize_tasks([]) == []

    def test_idempotent(self):
        raw = [
            {"title": "", "priority": "bogus", "tags": "x"},
            {"title": "Send report", "priority": "high", "tags": ["finance", 3], "dueDate": "2024-01-01"},
            "garbage",
        ]
        once = sanitize_tasks(raw)
        assert sanitize_tasks(once) == once


class TestSanitizeSummary:
    def test_keeps_summary(self):
        assert sanitize_summary("Team sync") == "Team sync"

    def test_missing_summary_gets_default(self):
        assert sanitize_summary(None) == "No summary available"
        assert sanitize_summary("") == "No summary available"
        assert sanitize_summary(["a"]) == "No summary available"


class TestTaskExtractionClient:
    @pytest.mark.asyncio
    async def test_returns_parsed_response(self):
        payload = {"summary": "Team sync", "tasks": [{"title": "Send report"}]}
        openai_client = make_openai_client(json.dumps(payload))

        result = await make_extractor(openai_client).extract("We need the report by Friday")

        assert isinstance(result, RawExtraction)
        assert result.summary == "Team sync"
        assert result.tasks == [{"title": "Send report"}]

    @pytest.mark.asyncio
    async def test_sends_prompt_in_json_mode(self):
        openai_client = make_openai_client('{"summary": "s", "tasks": []}')

        await make_extractor(openai_client).extract("hello team")

        kwargs = openai_client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["temperature"] == 0.1
        assert kwargs["max_tokens"] == 500
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["messages"][0] == {"role": "system", "content": EXTRACTION_SYSTEM_PROMPT}
        assert kwargs["messages"][1] == {"role": "user", "content": build_user_prompt("hello team")}

    @pytest.mark.asyncio
    async def test_strips_code_fences(self):
        openai_client = make_openai_client('```json\n{"summary": "fenced", "tasks": []}\n```')
        result = await make_extractor(openai_client).extract("text")
        assert result.summary == "fenced"

    @pytest.mark.asyncio
    async def test_api_error_raises_extraction_error(self):
        openai_client = make_openai_client(error=OpenAIError("connection reset"))
        with pytest.raises(ExtractionServiceError):
            await make_extractor(openai_client).extract("text")

    @pytest.mark.asyncio
    async def test_non_json_raises_extraction_error(self):
        openai_client = make_openai_client("Sure! Here are your tasks: ...")
        with pytest.raises(ExtractionServiceError):
            await make_extractor(openai_client).extract("text")

    @pytest.mark.asyncio
    async def test_empty_response_raises_extraction_error(self):
        openai_client = make_openai_client("")
        with pytest.raises(ExtractionServiceError):
            await make_extractor(openai_client).extract("text")

    @pytest.mark.asyncio
    async def test_json_array_raises_extraction_error(self):
        openai_client = make_openai_client('[{"title": "x"}]')
        with pytest.raises(ExtractionServiceError):
            await make_extractor(openai_client).extract("text")

    def test_missing_api_key_raises(self):
        extractor = TaskExtractionClient(ExtractionConfig(api_key=""))
        with pytest.raises(ExtractionServiceError):
            extractor._get_client()
