from __future__ import annotations

import logging

from rq import Worker

from demo_intake.logging import configure_logging
from demo_intake.jobs.polling_jobs import get_job_services

logger = logging.getLogger(__name__)


def main() -> None:
    services = get_job_services()
    settings = services.settings
    configure_logging(settings.LOG_LEVEL)

    # Validate configuration and fail fast if critical errors found
    settings.validate_and_fail_fast()

    queue = services.queue
    worker = Worker([queue], connection=queue.connection)
    logger.info("Starting RQ worker. queue=%s redis=%s", settings.RQ_QUEUE_NAME, settings.REDIS_URL)
    # The scheduler runs the delayed polling jobs.
    worker.work(with_scheduler=True)


if __name__ == "__main__":
    main()
