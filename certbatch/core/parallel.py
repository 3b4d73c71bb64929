from __future__ import annotations

import os
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterable, TypeVar

T = TypeVar("T")
R = TypeVar("R")


def default_worker_count() -> int:
    return min(32, (os.cpu_count() or 1) + 4)


def parallel_map(fn: Callable[[T], R], items: Iterable[T], *, max_workers: int | None = None) -> list[R]:
    """Apply ``fn`` to every item concurrently and return results in input order.

    ``fn`` is expected to turn per-item failures into result values; an
    exception that still escapes is re-raised here after every sibling has
    finished, so no item's work is abandoned half-way.
    """

    work = list(items)
    if not work:
        return []
    workers = max_workers if max_workers is not None else default_worker_count()
    if workers < 1:
        raise ValueError("max_workers must be >= 1")
    if workers == 1 or len(work) == 1:
        return [fn(x) for x in work]

    with ThreadPoolExecutor(max_workers=min(workers, len(work)), thread_name_prefix="certbatch") as pool:
        futures = [pool.submit(fn, x) for x in work]
    # Leaving the executor block joins every worker.
    return [f.result() for f in futures]
