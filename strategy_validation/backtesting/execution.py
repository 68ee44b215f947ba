"""
Task execution for independent backtest windows.

Folds and Monte Carlo trials share no data, so they can run in any order.
With max_workers == 1 tasks run sequentially in the calling thread;
otherwise on a thread pool with at most max_workers tasks in flight,
which also caps how many randomized candle copies exist at once.

Cancellation is cooperative: the event is checked before each task starts
and, on the thread pool, while tasks are in flight. Once it is set no
further tasks start and AnalysisCancelledError is raised once tasks
already running have finished; no partial results are returned.
"""

from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from threading import Event
from typing import Any, Callable, Optional
import structlog

from strategy_validation.exceptions import AnalysisCancelledError

logger = structlog.get_logger(__name__)


ProgressCallback = Callable[[int, int], None]

# How often in-flight tasks are checked for cancellation
CANCEL_POLL_SECONDS = 0.05


@dataclass(frozen=True)
class TaskOutcome:
    """Result or error of one task, keyed by its submission index."""
    index: int
    result: Any = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def run_tasks(
    tasks: list[Callable[[], Any]],
    max_workers: int = 1,
    cancel_event: Optional[Event] = None,
    progress_callback: Optional[ProgressCallback] = None,
    label: str = "task",
) -> list[TaskOutcome]:
    """
    Run independent tasks, collecting failures instead of raising them.

    Args:
        tasks: Zero-argument callables
        max_workers: Concurrency cap (1 = sequential)
        cancel_event: Checked before each task starts and while tasks run
        progress_callback: Called with (completed, total) after each task
        label: Name used in log events

    Returns:
        One TaskOutcome per task, ordered by index

    Raises:
        AnalysisCancelledError: if cancel_event is set before all tasks finish
    """
    total = len(tasks)
    outcomes: list[TaskOutcome] = []

    if max_workers <= 1 or total <= 1:
        for index, task in enumerate(tasks):
            _check_cancelled(cancel_event, label, len(outcomes), total)
            outcomes.append(_run_one(index, task))
            if progress_callback:
                progress_callback(len(outcomes), total)
        return outcomes

    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        pending: dict[Future, int] = {}
        next_index = 0

        try:
            while next_index < total or pending:
                while next_index < total and len(pending) < max_workers:
                    _check_cancelled(cancel_event, label, len(outcomes), total)
                    future = executor.submit(_run_one, next_index, tasks[next_index])
                    pending[future] = next_index
                    next_index += 1

                done, _ = wait(pending, timeout=CANCEL_POLL_SECONDS, return_when=FIRST_COMPLETED)
                for future in done:
                    pending.pop(future)
                    outcomes.append(future.result())
                    if progress_callback:
                        progress_callback(len(outcomes), total)

                if pending:
                    _check_cancelled(cancel_event, label, len(outcomes), total)
        except AnalysisCancelledError:
            for future in pending:
                future.cancel()
            raise

    outcomes.sort(key=lambda o: o.index)
    return outcomes


def _run_one(index: int, task: Callable[[], Any]) -> TaskOutcome:
    try:
        return TaskOutcome(index=index, result=task())
    except Exception as e:
        return TaskOutcome(index=index, error=e)


def _check_cancelled(
    cancel_event: Optional[Event],
    label: str,
    completed: int,
    total: int,
) -> None:
    if cancel_event is not None and cancel_event.is_set():
        logger.warning(f"{label}_execution_cancelled", completed=completed, total=total)
        raise AnalysisCancelledError(
            f"{label} execution cancelled after {completed}/{total} tasks"
        )
