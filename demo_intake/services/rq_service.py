from __future__ import annotations

import re
from datetime import timedelta

from redis import Redis
from rq import Queue
from rq.job import Job

POLL_JOB = "demo_intake.jobs.polling_jobs.poll_conversation"


def create_queue(*, name: str, connection: Redis) -> Queue:
    return Queue(name=name, connection=connection, default_timeout=900)


def poll_job_id(session_id: str, attempt: int) -> str:
    # RQ only accepts [A-Za-z0-9_-] in job ids.
    return f"poll-{re.sub(r'[^A-Za-z0-9_-]', '_', session_id)}-{attempt}"


def schedule_poll(queue: Queue, session_id: str, *, delay_seconds: int, attempt: int = 1) -> Job:
    """
    Schedule one polling cycle. The job id is derived from (session, attempt) so two
    triggers scheduling the same cycle collapse into a single job.
    """
    return queue.enqueue_in(
        timedelta(seconds=delay_seconds),
        POLL_JOB,
        session_id,
        attempt,
        job_id=poll_job_id(session_id, attempt),
    )
