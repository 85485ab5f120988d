"""
Worker Pool
===========

A reusable joblib worker pool shared by every tuning call of a batch run.

The pool is started once before the response loop and shut down once after
it; in between, each grid point x fold evaluation is an independent task.
"""

import logging
from typing import Any, Callable, Iterable, List, Optional

from joblib import Parallel, cpu_count, delayed

logger = logging.getLogger(__name__)


def default_worker_count() -> int:
    """All but one core, never fewer than one worker."""
    return max(1, cpu_count() - 1)


class WorkerPool:
    """
    Context-managed joblib pool.

    Args:
        n_workers: Number of workers (default: cpu_count() - 1)
        backend: joblib backend ('loky', 'threading', 'multiprocessing')

    Example:
        with WorkerPool(n_workers=3) as pool:
            results = pool.map(func, [(a, b), (c, d)])
    """

    def __init__(self, n_workers: Optional[int] = None, backend: str = "loky"):
        self.n_workers = n_workers or default_worker_count()
        self.backend = backend
        self.shutdowns = 0
        self._parallel: Optional[Parallel] = None

    @property
    def is_running(self) -> bool:
        return self._parallel is not None

    def start(self) -> 'WorkerPool':
        if self.is_running:
            return self
        self._parallel = Parallel(n_jobs=self.n_workers, backend=self.backend)
        self._parallel.__enter__()
        logger.info(f"Started worker pool: {self.n_workers} workers ({self.backend})")
        return self

    def shutdown(self) -> None:
        if not self.is_running:
            return
        parallel, self._parallel = self._parallel, None
        parallel.__exit__(None, None, None)
        self.shutdowns += 1
        logger.info("Worker pool stopped")

    def map(self, func: Callable, tasks: Iterable[tuple]) -> List[Any]:
        """
        Run ``func(*task)`` for every task, preserving order.

        Runs inline when the pool is not started.
        """
        if not self.is_running:
            return [func(*task) for task in tasks]
        return self._parallel(delayed(func)(*task) for task in tasks)

    def __enter__(self) -> 'WorkerPool':
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()

    def __repr__(self) -> str:
        state = "running" if self.is_running else "stopped"
        return f"WorkerPool(n_workers={self.n_workers}, backend={self.backend!r}, {state})"
