"""
Job scheduler

Tasks are registered by name with a handler taking a JSON-like payload.
The RQ implementation enqueues a module-level entry point (run_task) that
resolves the handler through the scheduler bound in the worker process.
"""

import logging
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Any, Callable, Dict, Optional

import redis
from rq import Queue, get_current_job

from emailpay.infrastructure.logging_config import trace_id_context
from emailpay.utils.trace_id import generate_job_trace_id

logger = logging.getLogger(__name__)

TaskHandler = Callable[[Dict[str, Any]], None]

DEFAULT_JOB_TIMEOUT_SECONDS = 600


class UnknownTaskError(Exception):
    """Raised when a task name has no registered handler"""
    pass


class JobScheduler(ABC):
    """Named-task scheduler: define_task, run_now, run_every"""

    def __init__(self):
        self._handlers: Dict[str, TaskHandler] = {}
        self._intervals: Dict[str, int] = {}

    def define_task(self, name: str, handler: TaskHandler) -> None:
        self._handlers[name] = handler

    @property
    def task_names(self):
        return sorted(self._handlers)

    def interval_for(self, name: str) -> Optional[int]:
        return self._intervals.get(name)

    @abstractmethod
    def run_now(self, name: str, payload: Optional[Dict[str, Any]] = None) -> None:
        """Schedule a single run of the task as soon as possible"""

    @abstractmethod
    def run_every(self, name: str, interval_seconds: int, payload: Optional[Dict[str, Any]] = None) -> None:
        """Run the task now and then every interval_seconds"""

    def execute(self, name: str, payload: Optional[Dict[str, Any]] = None) -> None:
        """
        Run a task handler in the current process under a job trace id.

        Handlers catch their own errors; anything that still escapes is
        logged here and not re-raised.
        """
        handler = self._handlers.get(name)
        if handler is None:
            raise UnknownTaskError(f"No handler registered for task {name}")

        token = trace_id_context.set(generate_job_trace_id(name))
        try:
            logger.info(f"Running task {name}", extra={"task": name})
            handler(payload or {})
        except Exception:
            logger.exception(f"Task {name} raised an unhandled error", extra={"task": name})
        finally:
            trace_id_context.reset(token)


class RQJobScheduler(JobScheduler):
    """JobScheduler backed by an RQ queue"""

    def __init__(
        self,
        connection: redis.Redis,
        queue_name: str,
        job_timeout: int = DEFAULT_JOB_TIMEOUT_SECONDS,
    ):
        super().__init__()
        self.queue = Queue(queue_name, connection=connection)
        self.job_timeout = job_timeout

    def run_now(self, name: str, payload: Optional[Dict[str, Any]] = None) -> None:
        job = self.queue.enqueue(run_task, name, payload or {}, job_timeout=self.job_timeout)
        logger.info(f"Enqueued task {name}", extra={"task": name, "job_id": job.id})

    def run_every(self, name: str, interval_seconds: int, payload: Optional[Dict[str, Any]] = None) -> None:
        self._intervals[name] = interval_seconds
        self._cancel_scheduled(name)
        self.queue.enqueue(
            run_task, name, payload or {}, job_timeout=self.job_timeout, meta={"recurring": name}
        )
        logger.info(
            f"Scheduled recurring task {name}",
            extra={"task": name, "interval_seconds": interval_seconds},
        )

    def schedule_next(self, name: str, payload: Optional[Dict[str, Any]] = None) -> None:
        interval = self._intervals.get(name)
        if interval is None:
            return
        self.queue.enqueue_in(
            timedelta(seconds=interval),
            run_task,
            name,
            payload or {},
            job_timeout=self.job_timeout,
            meta={"recurring": name},
        )

    def _cancel_scheduled(self, name: str) -> None:
        """Drop pending runs of a recurring task left behind by an earlier worker"""
        registry = self.queue.scheduled_job_registry
        for job_id in registry.get_job_ids():
            job = self.queue.fetch_job(job_id)
            if job is not None and job.meta.get("recurring") == name:
                registry.remove(job, delete_job=True)


_bound_scheduler: Optional[JobScheduler] = None


def bind_scheduler(scheduler: Optional[JobScheduler]) -> None:
    """Make a scheduler's handlers available to run_task in this process"""
    global _bound_scheduler
    _bound_scheduler = scheduler


def get_bound_scheduler() -> Optional[JobScheduler]:
    return _bound_scheduler


def run_task(name: str, payload: Dict[str, Any]) -> None:
    """RQ job entry point"""
    scheduler = _bound_scheduler
    if scheduler is None:
        raise RuntimeError("No job scheduler bound in this process; start jobs with emailpay.workers.worker")

    try:
        scheduler.execute(name, payload)
    finally:
        job = get_current_job()
        recurring = job is not None and job.meta.get("recurring") == name
        if recurring and isinstance(scheduler, RQJobScheduler):
            scheduler.schedule_next(name, payload)
