"""Recovery of tasks missing from the node table.

Tasks are identified by a hash of their text and owning document, so a task
whose row was lost can be re-derived from the document's structured output:
every candidate text is hashed and compared with the requested ids.
"""

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from ..graph.models import TaskNode, generate_task_id, normalize_task_text

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 100


class ProcessedDocument(BaseModel):
    """Document with the structured output of task extraction."""

    id: str
    processed_at: Optional[datetime] = Field(default=None)
    structured_output: Optional[dict[str, Any]] = Field(default=None)


DocumentPageFetcher = Callable[[int, int], Awaitable[list[ProcessedDocument]]]


def extract_task_texts(structured_output: Optional[dict[str, Any]]) -> list[str]:
    """Collect candidate task texts from a document's structured output.

    Reads ``actions`` (strings or ``{"text": ...}`` objects) and the
    ``lno_tasks`` leverage/neutral/overhead lists. Order is preserved and
    duplicates dropped.
    """
    if not isinstance(structured_output, dict):
        return []

    texts: dict[str, None] = {}

    def add(value: object) -> None:
        if isinstance(value, str):
            normalized = normalize_task_text(value)
            if normalized:
                texts.setdefault(normalized, None)

    actions = structured_output.get("actions")
    if isinstance(actions, list):
        for action in actions:
            if isinstance(action, dict):
                add(action.get("text"))
            else:
                add(action)

    lno_tasks = structured_output.get("lno_tasks")
    if isinstance(lno_tasks, dict):
        for group in ("leverage", "neutral", "overhead"):
            entries = lno_tasks.get(group)
            if isinstance(entries, list):
                for entry in entries:
                    add(entry)

    return list(texts)


async def recover_tasks_from_documents(
    fetch_page: DocumentPageFetcher,
    target_ids: list[str],
    page_size: int = DEFAULT_PAGE_SIZE,
) -> list[TaskNode]:
    """Re-derive missing task nodes by hashing document task texts.

    Args:
        fetch_page: Async callable returning documents for (offset, limit)
        target_ids: Ids to look for
        page_size: Documents per page

    Returns:
        Recovered nodes (only ids that were requested)
    """
    remaining = set(target_ids)
    recovered: list[TaskNode] = []
    offset = 0

    while remaining:
        documents = await fetch_page(offset, page_size)
        if not documents:
            break

        for document in documents:
            for text in extract_task_texts(document.structured_output):
                task_id = generate_task_id(text, document.id)
                if task_id not in remaining:
                    continue
                recovered.append(
                    TaskNode(
                        task_id=task_id,
                        text=text,
                        document_id=document.id,
                        created_at=document.processed_at,
                    )
                )
                remaining.discard(task_id)
            if not remaining:
                break

        if len(documents) < page_size:
            break
        offset += page_size

    if recovered:
        logger.info(f"Recovered {len(recovered)}/{len(target_ids)} tasks from processed documents")
    return recovered
