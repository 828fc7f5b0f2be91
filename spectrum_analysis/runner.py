"""Run one analysis operator at a time on a worker thread, with progress and cancellation."""
from concurrent.futures import Future, ThreadPoolExecutor
import logging
import threading
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class AnalysisCancelled(RuntimeError):
    """Raised inside a running operator once its job has been cancelled."""


class ProgressReporter:
    """Forward fractional progress to an external sink.

    Fractions are clamped to [0, 1] and never go backwards. Every report is
    also a cancellation point.
    """

    def __init__(self, sink: Optional[Callable[[float], None]] = None):
        self.sink = sink
        self.fraction = 0.0
        self._cancelled = threading.Event()

    def __call__(self, fraction: float):
        if self._cancelled.is_set():
            raise AnalysisCancelled("Cancelled")
        fraction = min(1.0, max(self.fraction, float(fraction)))
        self.fraction = fraction
        if self.sink is not None:
            self.sink(fraction)

    def cancel(self):
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()


class AnalysisJob:
    def __init__(self, future: Future, reporter: ProgressReporter, name: str):
        self.future = future
        self.reporter = reporter
        self.name = name

    def cancel(self):
        """Request cancellation; a job that has not started yet never runs."""
        self.reporter.cancel()
        self.future.cancel()

    def done(self) -> bool:
        return self.future.done()

    @property
    def progress(self) -> float:
        return self.reporter.fraction

    def result(self, timeout: Optional[float] = None) -> Any:
        return self.future.result(timeout)


class AnalysisRunner:
    """Single-worker executor for long-running operators.

    The operator must accept a ``progress`` keyword; it receives the job's
    ``ProgressReporter``.
    """

    def __init__(self):
        self.pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix='spectrum-analysis')
        self._current: Optional[AnalysisJob] = None
        self._lock = threading.Lock()

    def start(self, operation: Callable[..., Any], *args,
              progress_sink: Optional[Callable[[float], None]] = None, **kwargs) -> AnalysisJob:
        name = getattr(operation, '__name__', repr(operation))
        reporter = ProgressReporter(progress_sink)

        def _run():
            logger.info(f"Started {name}")
            try:
                result = operation(*args, progress=reporter, **kwargs)
            except AnalysisCancelled:
                logger.info(f"Cancelled {name}")
                raise
            except Exception as e:
                logger.error(f"{name} failed: {e}")
                raise
            reporter(1.0)
            logger.info(f"Finished {name}")
            return result

        with self._lock:
            job = AnalysisJob(self.pool.submit(_run), reporter, name)
            self._current = job
        return job

    def cancel(self) -> bool:
        with self._lock:
            job = self._current
        if job is None or job.done():
            return False
        job.cancel()
        return True

    def is_running(self) -> bool:
        with self._lock:
            job = self._current
        return job is not None and not job.done()

    def shutdown(self, wait: bool = True):
        self.cancel()
        self.pool.shutdown(wait=wait)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.shutdown()
