"""
RQ Worker bootstrap

Runs every EmailPay task in a single SimpleWorker process with the RQ
scheduler enabled for recurring jobs.
"""

import logging

from rq import SimpleWorker

from emailpay.infrastructure.logging_config import setup_logging
from emailpay.infrastructure.settings import get_settings
from emailpay.services.container import ServiceContainer
from emailpay.workers.jobs import define_emailpay_tasks, schedule_recurring_tasks
from emailpay.workers.scheduler import bind_scheduler

logger = logging.getLogger(__name__)


def main() -> None:
    settings = get_settings()
    setup_logging(settings.LOG_LEVEL)

    container = ServiceContainer(settings).start()
    define_emailpay_tasks(container)
    bind_scheduler(container.scheduler)
    schedule_recurring_tasks(container)

    queue = container.scheduler.queue
    worker = SimpleWorker([queue], connection=queue.connection)
    logger.info(f"Worker listening on queue {queue.name}", extra={"tasks": container.scheduler.task_names})
    try:
        worker.work(with_scheduler=True)
    finally:
        bind_scheduler(None)
        container.close()


if __name__ == "__main__":
    main()
