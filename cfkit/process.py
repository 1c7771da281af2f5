"""Fixed-partition parallel execution.

`run_partitioned` runs a three-phase task over a fixed collection of work items:

1. ``task.setup()`` once, in the calling thread
2. ``task.step(item)`` for every item, spread over ``num_workers`` threads by a
   fixed interleaved stride (worker ``w`` takes positions ``w, w + n, w + 2n, ...``)
3. ``task.teardown()`` once, in the calling thread, after every worker joined

There is no locking: each `step` must write only to output slots keyed by its
own item. Steps of one worker run in increasing position order; there is no
ordering between workers.
"""
from __future__ import annotations

import logging
import os
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Callable, Generic, Protocol, Sequence, TypeVar


logger = logging.getLogger(__name__)

T = TypeVar("T")
T_contra = TypeVar("T_contra", contravariant=True)


class PartitionedTask(Protocol[T_contra]):
    def setup(self) -> None: ...

    def step(self, item: T_contra) -> None: ...

    def teardown(self) -> None: ...


class FunctionTask(Generic[T]):
    """Adapt plain callables to the setup/step/teardown protocol."""

    def __init__(
        self,
        step: Callable[[T], None],
        *,
        setup: Callable[[], None] | None = None,
        teardown: Callable[[], None] | None = None,
    ) -> None:
        self._step = step
        self._setup = setup
        self._teardown = teardown

    def setup(self) -> None:
        if self._setup is not None:
            self._setup()

    def step(self, item: T) -> None:
        self._step(item)

    def teardown(self) -> None:
        if self._teardown is not None:
            self._teardown()


class PartitionError(RuntimeError):
    """A worker failed; raised once, after all workers have joined."""

    def __init__(self, worker: int, position: int, num_failed: int) -> None:
        super().__init__(
            f"worker {worker} failed at item position {position} ({num_failed} partition(s) failed)"
        )
        self.worker = worker
        self.position = position
        self.num_failed = num_failed


class _PartitionFailure(Exception):
    def __init__(self, position: int, cause: BaseException) -> None:
        super().__init__(position)
        self.position = position
        self.cause = cause


def default_num_workers() -> int:
    return os.cpu_count() or 1


def stride_partition(size: int, worker: int, num_workers: int) -> range:
    """Positions handled by `worker` out of `num_workers` over `size` items."""
    return range(worker, size, num_workers)


def run_partitioned(
    items: Sequence[T],
    task: PartitionedTask[T],
    num_workers: int | None = None,
) -> None:
    """Run `task` over `items` and block until every partition is done.

    A failure inside a worker stops that worker's partition only; the remaining
    workers run to completion, then a single `PartitionError` chained to the first
    failing worker's exception is raised. Teardown does not run in that case and
    results already written are kept.
    """
    if num_workers is None:
        num_workers = default_num_workers()
    if int(num_workers) < 1:
        raise ValueError(f"num_workers must be >= 1, got {num_workers}")
    num_workers = int(num_workers)

    size = len(items)
    task.setup()

    # Never start more workers than there are items.
    active = min(num_workers, size)
    logger.debug("run_partitioned: items=%d workers=%d task=%s", size, active, type(task).__name__)

    failures: dict[int, _PartitionFailure] = {}
    if active == 1:
        try:
            _run_partition(items, task, 0, 1)
        except _PartitionFailure as failure:
            failures[0] = failure
    elif active > 1:
        with ThreadPoolExecutor(max_workers=active, thread_name_prefix="cfkit-worker") as pool:
            futures = [pool.submit(_run_partition, items, task, w, active) for w in range(active)]
            wait(futures)
        for w, future in enumerate(futures):
            exc = future.exception()
            if isinstance(exc, _PartitionFailure):
                failures[w] = exc
            elif exc is not None:
                failures[w] = _PartitionFailure(-1, exc)

    if failures:
        worker = min(failures)
        first = failures[worker]
        logger.error("run_partitioned: %d of %d partitions failed", len(failures), active)
        raise PartitionError(worker, first.position, len(failures)) from first.cause

    task.teardown()


def _run_partition(items: Sequence[T], task: PartitionedTask[T], worker: int, num_workers: int) -> None:
    for pos in stride_partition(len(items), worker, num_workers):
        try:
            task.step(items[pos])
        except Exception as exc:
            raise _PartitionFailure(pos, exc) from exc
