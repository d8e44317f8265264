"""
Parallel processing utilities for Regional Spatial Analysis.
"""
import os
import time
import logging
from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor, as_completed
from typing import Any, Callable, List, Optional, Sequence

logger = logging.getLogger(__name__)


def resolve_workers(max_workers: Optional[int], n_items: int) -> int:
    """Clamp the requested worker count to the machine and the workload."""
    if max_workers is None:
        cpu_count = os.cpu_count() or 4
        max_workers = max(1, cpu_count - 1)
    return max(1, min(max_workers, n_items))


def chunked(items: Sequence[Any], n_chunks: int) -> List[List[Any]]:
    """Split items into at most n_chunks contiguous, non-empty chunks."""
    n_chunks = max(1, min(n_chunks, len(items)))
    size, extra = divmod(len(items), n_chunks)
    chunks = []
    start = 0
    for i in range(n_chunks):
        stop = start + size + (1 if i < extra else 0)
        chunks.append(list(items[start:stop]))
        start = stop
    return [c for c in chunks if c]


def parallel_map(
    func: Callable[[Any], Any],
    items: Sequence[Any],
    max_workers: Optional[int] = 1,
    executor: str = 'process',
    progress: bool = False
) -> List[Any]:
    """
    Apply func to every item and return results in input order.

    Runs sequentially when a single worker is requested. ``func`` must be a
    module-level callable when the process executor is used. Item-level
    error isolation is the responsibility of ``func``; an exception escaping
    it propagates to the caller.
    """
    if not items:
        return []

    workers = resolve_workers(max_workers, len(items))
    if workers == 1:
        return [func(item) for item in items]

    pool_cls = ProcessPoolExecutor if executor == 'process' else ThreadPoolExecutor
    logger.info(f"Starting parallel processing of {len(items)} items with {workers} {executor} workers")
    start_time = time.time()

    results: List[Any] = [None] * len(items)
    with pool_cls(max_workers=workers) as pool:
        future_to_index = {pool.submit(func, item): i for i, item in enumerate(items)}

        completed = 0
        for future in as_completed(future_to_index):
            results[future_to_index[future]] = future.result()

            completed += 1
            if progress and completed % max(1, len(items) // 10) == 0:
                elapsed = time.time() - start_time
                percent = (completed / len(items)) * 100
                logger.info(f"Progress: {percent:.1f}% ({completed}/{len(items)}) - {elapsed:.1f}s elapsed")

    logger.info(f"Parallel processing completed in {time.time() - start_time:.1f}s")
    return results
