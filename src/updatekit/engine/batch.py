"""Batched processing of large item sets across many runner invocations.

A :class:`BatchQueue` is itself a step function. On its first invocation it
snapshots one ordered queue of item ids per category and stores the queues,
the ``processed`` counter and the ``total`` in the step's ProgressState. Each
later invocation processes the next ``batch_size`` items. Queues are never
recomputed mid-run, so items added to a collection after the snapshot are
not picked up and the completion fraction stays consistent.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, Mapping

from .errors import RegistrationError
from .models import ProgressState, StepContext

logger = logging.getLogger(__name__)

ItemSource = Callable[[StepContext], Iterable[Any]]
ItemHandler = Callable[[StepContext, Any], None]


class BatchQueue:
    """Step function popping items from per-category queues.

    Args:
        sources: Category tag -> callable returning the item ids to process
        handlers: Category tag -> callable processing one item id
        batch_size: Items processed per invocation

    Raises:
        RegistrationError: If a category lacks a handler or a handler has no
            matching source
    """

    def __init__(
        self,
        sources: Mapping[str, ItemSource],
        handlers: Mapping[str, ItemHandler],
        batch_size: int = 1,
    ) -> None:
        missing = sorted(set(sources) - set(handlers))
        if missing:
            raise RegistrationError(f"No handler for item categor(y/ies): {', '.join(missing)}")
        orphaned = sorted(set(handlers) - set(sources))
        if orphaned:
            raise RegistrationError(f"No item source for categor(y/ies): {', '.join(orphaned)}")
        if batch_size < 1:
            raise RegistrationError(f"batch_size must be >= 1, got {batch_size}")

        self.categories = list(sources)
        self.sources = dict(sources)
        self.handlers = dict(handlers)
        self.batch_size = batch_size

    def __call__(self, context: StepContext, progress: ProgressState) -> float:
        if "queues" not in progress:
            self._snapshot(context, progress)

        total = progress["total"]
        if total == 0:
            return 1.0

        budget = self.batch_size
        queues: dict[str, list[Any]] = progress["queues"]
        for category in self.categories:
            queue = queues.get(category, [])
            handler = self.handlers[category]
            while queue and budget:
                # Pop only after the handler returns so a failing item is retried.
                handler(context, queue[0])
                queue.pop(0)
                progress["processed"] += 1
                budget -= 1
            if not budget:
                break

        return progress["processed"] / total

    def _snapshot(self, context: StepContext, progress: ProgressState) -> None:
        queues = {category: list(self.sources[category](context)) for category in self.categories}
        progress["queues"] = queues
        progress["total"] = sum(len(queue) for queue in queues.values())
        progress["processed"] = 0
        logger.debug(
            "Queued %d item(s) for %s:%s across %d categor(y/ies)",
            progress["total"],
            context.module,
            context.version,
            len(queues),
        )
