"""
Extraction pipeline entry point.

process_and_extract(): validate input -> AI extraction -> sanitize ->
persist communication, tasks and one activity per task in a single transaction.
"""
import json
import logging
import uuid
from typing import List

from errors import InvalidInputError, TaskFlowError
from models import (
    INPUT_KINDS,
    Activity,
    Communication,
    ExtractionResult,
    SanitizedTask,
    Task,
)
from storage import coerce_due_date
from task_extraction import TaskExtractionClient, sanitize_summary, sanitize_tasks

logger = logging.getLogger(__name__)


def extraction_activity_description(title: str) -> str:
    return f'Task "{title}" created from communication analysis'


class ExtractionOrchestrator:
    def __init__(self, extractor: TaskExtractionClient, storage):
        self.extractor = extractor
        self.storage = storage

    @staticmethod
    def _validate(title: str, content: str, input_kind: str):
        if not isinstance(title, str) or not title.strip():
            raise InvalidInputError("Title is required")
        if not isinstance(content, str) or not content.strip():
            raise InvalidInputError("Content is required")
        if input_kind not in INPUT_KINDS:
            raise InvalidInputError(f"Invalid communication type: {input_kind}. Must be one of {', '.join(INPUT_KINDS)}")

    async def process_and_extract(self, user_id: str, title: str, content: str,
                                  input_kind: str = "text") -> ExtractionResult:
        """
        Run the full extraction pipeline for one communication.

        Args:
            user_id: Owner of every record created
            title: Communication title
            content: Free-form text sent to the AI service
            input_kind: text, file or voice

        Returns:
            ExtractionResult with the stored communication and its tasks in AI order

        Raises:
            InvalidInputError: blank title/content or unknown input kind (nothing called)
            ExtractionServiceError: the AI call failed (nothing written)
            PersistenceError: a write failed (the whole call is rolled back)
        """
        self._validate(title, content, input_kind)

        trace_id = uuid.uuid4().hex[:8]
        logger.info(json.dumps({
            "stage": "extraction_started",
            "trace_id": trace_id,
            "user_id": user_id,
            "input_kind": input_kind,
            "content_len": len(content),
        }))

        try:
            raw = await self.extractor.extract(content)
            sanitized = sanitize_tasks(raw.tasks)
            summary = sanitize_summary(raw.summary)
            logger.info(json.dumps({
                "stage": "extraction_llm_completed",
                "trace_id": trace_id,
                "tasks_count": len(sanitized),
                "titles": [t.title for t in sanitized][:10],
            }))

            communication, tasks = await self._persist(user_id, title, content, input_kind, summary, sanitized)
        except TaskFlowError as e:
            logger.error(json.dumps({
                "stage": "extraction_failed",
                "trace_id": trace_id,
                "error_type": type(e).__name__,
                "error": e.message,
            }))
            raise

        logger.info(json.dumps({
            "stage": "extraction_persisted",
            "trace_id": trace_id,
            "communication_id": communication.id,
            "task_ids": [t.id for t in tasks],
        }))
        return ExtractionResult(communication=communication, tasks=tasks)

    async def _persist(self, user_id: str, title: str, content: str, input_kind: str,
                       summary: str, sanitized: List[SanitizedTask]):
        async with self.storage.transaction() as tx:
            communication = await tx.create_communication(Communication(
                user_id=user_id,
                title=title,
                content=content,
                summary=summary,
                type=input_kind,
            ))

            created: List[Task] = []
            # Tasks keep AI order; each activity follows its task
            for item in sanitized:
                task = await tx.create_task(Task(
                    user_id=user_id,
                    communication_id=communication.id,
                    title=item.title,
                    description=item.description,
                    priority=item.priority,
                    status="pending",
                    assignee=item.assignee,
                    tags=item.tags,
                    due_date=coerce_due_date(item.due_date),
                ))
                await tx.create_activity(Activity(
                    user_id=user_id,
                    task_id=task.id,
                    action="created",
                    description=extraction_activity_description(task.title),
                ))
                created.append(task)

        return communication, created
