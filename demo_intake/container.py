from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from redis import Redis
from rq import Queue

from demo_intake.services.analyzer_service import TranscriptAnalyzer
from demo_intake.services.email_service import EmailDispatcher
from demo_intake.services.event_store_service import EventStore
from demo_intake.services.llm_service import LLMClient
from demo_intake.services.orchestrator import IntakeOrchestrator
from demo_intake.services.redis_client import create_redis_bytes, create_redis_str
from demo_intake.services.report_service import ReportRenderer
from demo_intake.services.rq_service import create_queue
from demo_intake.services.session_store import RedisSessionStore
from demo_intake.services.slack_service import SlackNotifier
from demo_intake.services.tavus_service import TavusClient
from demo_intake.settings import Settings


@dataclass
class Services:
    """Everything a completion trigger needs, built once per process."""

    settings: Settings
    redis: Redis
    store: RedisSessionStore
    events: EventStore
    tavus: TavusClient
    analyzer: TranscriptAnalyzer
    renderer: ReportRenderer
    dispatcher: EmailDispatcher
    notifier: SlackNotifier
    orchestrator: IntakeOrchestrator
    queue: Queue


def build_services(
    settings: Settings,
    *,
    redis: Optional[Redis] = None,
    queue: Optional[Queue] = None,
) -> Services:
    """
    Construct every client from settings. `redis` and `queue` can be passed in
    (tests use an in-memory Redis and a recording queue).
    """
    redis = redis if redis is not None else create_redis_str(settings.REDIS_URL)
    if queue is None:
        queue = create_queue(name=settings.RQ_QUEUE_NAME, connection=create_redis_bytes(settings.REDIS_URL))

    store = RedisSessionStore(redis)
    tavus = TavusClient(
        api_key=settings.TAVUS_API_KEY,
        base_url=settings.TAVUS_BASE_URL,
        timeout=settings.TAVUS_TIMEOUT_SECONDS,
    )
    llm = LLMClient(
        provider=settings.LLM_PROVIDER,
        api_key=settings.active_llm_api_key(),
        model=settings.active_llm_model(),
        timeout=settings.LLM_TIMEOUT_SECONDS,
    )
    analyzer = TranscriptAnalyzer(llm)
    renderer = ReportRenderer(facility_name=settings.REPORT_FACILITY_NAME)
    dispatcher = EmailDispatcher(
        api_key=settings.RESEND_API_KEY,
        from_address=settings.EMAIL_FROM,
        timeout=settings.EMAIL_TIMEOUT_SECONDS,
    )
    notifier = SlackNotifier(webhook_url=settings.SLACK_WEBHOOK_URL)
    orchestrator = IntakeOrchestrator(
        store=store,
        tavus=tavus,
        analyzer=analyzer,
        renderer=renderer,
        dispatcher=dispatcher,
        notifier=notifier,
        claim_ttl_seconds=settings.REPORT_CLAIM_TTL_SECONDS,
    )
    return Services(
        settings=settings,
        redis=redis,
        store=store,
        events=EventStore(redis, ttl_seconds=settings.EVENT_TTL_SECONDS),
        tavus=tavus,
        analyzer=analyzer,
        renderer=renderer,
        dispatcher=dispatcher,
        notifier=notifier,
        orchestrator=orchestrator,
        queue=queue,
    )
