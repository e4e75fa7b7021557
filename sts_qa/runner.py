from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Iterable, List, Optional, Sequence

from sts_qa.accumulators import EventStatistics, RunAccumulators
from sts_qa.errors import DataInconsistencyError
from sts_qa.event import Event
from sts_qa.qa import TrackQa

logger = logging.getLogger(__name__)


def run_events(
    task: TrackQa,
    events: Iterable[Event],
    accumulators: RunAccumulators,
    *,
    max_events: Optional[int] = None,
) -> List[EventStatistics]:
    """
    Feed events to an initialised task one by one.

    A :class:`~sts_qa.errors.DataInconsistencyError` stops the run: the task
    has already counted the event as failed, the error is re-raised.
    """
    stats: List[EventStatistics] = []
    for i, event in enumerate(events):
        if max_events is not None and i >= max_events:
            break
        stats.append(task.process_event(event, accumulators))
    return stats


def _split(events: Sequence[Event], n: int) -> List[List[Event]]:
    chunks: List[List[Event]] = [[] for _ in range(n)]
    for i, event in enumerate(events):
        chunks[i % n].append(event)
    return [c for c in chunks if c]


def run_events_parallel(
    task: TrackQa,
    events: Sequence[Event],
    accumulators: RunAccumulators,
    *,
    workers: int = 2,
) -> List[EventStatistics]:
    r"""
    Process events on a thread pool and reduce into ``accumulators``.

    Every worker owns a spawned copy of ``task`` and its own partial
    :class:`~sts_qa.accumulators.RunAccumulators`; nothing is shared while
    events are processed. Partials and matcher statistics are merged under
    one lock as each worker completes. Since the merge is associative and
    order-independent the result equals a sequential run over the same
    events.

    Returns
    -------
    list of EventStatistics
        Sorted by event number.

    Raises
    ------
    DataInconsistencyError
        The first one raised by any worker, after all workers have finished
        and the surviving partials (including failed-event counts) are merged.
    """
    events = list(events)
    if workers <= 1 or len(events) <= 1:
        return run_events(task, events, accumulators)

    lock = threading.Lock()
    stats: List[EventStatistics] = []

    def work(chunk: List[Event]) -> None:
        local_task = task.spawn()
        local_acc = RunAccumulators.like(accumulators)
        local_stats: List[EventStatistics] = []
        try:
            for event in chunk:
                local_stats.append(local_task.process_event(event, local_acc))
        finally:
            with lock:
                accumulators.merge(local_acc)
                task.matcher.statistics.merge(local_task.matcher.statistics)
                stats.extend(local_stats)

    first_error: Optional[DataInconsistencyError] = None
    with ThreadPoolExecutor(max_workers=workers) as exe:
        futures = [exe.submit(work, chunk) for chunk in _split(events, workers)]
        for f in as_completed(futures):
            try:
                f.result()
            except DataInconsistencyError as e:
                logger.error("Worker stopped: %s", e)
                if first_error is None:
                    first_error = e

    if first_error is not None:
        raise first_error
    stats.sort(key=lambda s: s.event)
    logger.info("Processed %d events on %d workers", len(stats), workers)
    return stats
