"""Bounded fan-out for reconciliation runs."""

from collections.abc import Callable, Iterable
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Generic, TypeVar

from previewctl.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class TaskOutcome(Generic[T, R]):
    """Result of one unit of work. Exactly one of value/error is meaningful."""

    item: T
    key: str
    value: R | None = None
    error: BaseException | None = None
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None and not self.timed_out


def run_bounded(
    items: Iterable[T],
    fn: Callable[[T], R],
    *,
    key: Callable[[T], str] = str,
    max_workers: int = 4,
    timeout: float | None = None,
    name: str = "reconcile",
) -> list[TaskOutcome[T, R]]:
    """
    Run ``fn`` over ``items`` on a small thread pool.

    Each item is an independently failing unit: an exception is captured in
    its outcome and never stops the others. Items still running after
    ``timeout`` seconds are abandoned and reported as timed out; they are left
    for the next scheduled run.

    Abandoning only stops waiting: a running thread cannot be interrupted, and
    interpreter exit still joins it. Provider calls carry their own httpx
    timeouts, which bound how long that join can take.

    Returns:
        One outcome per item, in input order
    """
    items = list(items)
    if not items:
        return []

    pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=f"previewctl-{name}")
    futures: list[tuple[T, Future[R]]] = [(item, pool.submit(fn, item)) for item in items]
    try:
        wait([f for _, f in futures], timeout=timeout)
    finally:
        # Queued work is cancelled; running threads finish in the background
        pool.shutdown(wait=False, cancel_futures=True)

    outcomes: list[TaskOutcome[T, R]] = []
    for item, future in futures:
        outcome: TaskOutcome[T, R] = TaskOutcome(item=item, key=key(item))
        if not future.done():
            outcome.timed_out = True
            logger.warning("Task abandoned after timeout", task=name, key=outcome.key, timeout=timeout)
        elif future.cancelled():
            outcome.timed_out = True
        elif (error := future.exception()) is not None:
            outcome.error = error
            logger.error("Task failed", task=name, key=outcome.key, error=str(error))
        else:
            outcome.value = future.result()
        outcomes.append(outcome)
    return outcomes
