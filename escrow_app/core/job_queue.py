import logging
from typing import Protocol

import dramatiq
from dramatiq.brokers.redis import RedisBroker

from .settings import settings

logger = logging.getLogger(__name__)

SEAL_CONTRACT = "seal_contract"
NOTIFY_PARTY = "notify_party"
GENERATE_RECEIPT = "generate_payment_receipt"
SWEEP_NOTICE_PERIODS = "sweep_notice_periods"
PURGE_SIGNING_SECRETS = "purge_signing_secrets"
CLOSE_RETRACTION_WINDOWS = "close_retraction_windows"


class JobQueue(Protocol):
    def enqueue(self, name: str, *args, delay_seconds: int = 0) -> str: ...


class DramatiqJobQueue:
    """Enqueues by actor name so the web process needs no actor imports."""

    def __init__(self, broker: dramatiq.Broker | None = None):
        self._broker = broker

    @property
    def broker(self) -> dramatiq.Broker:
        if self._broker is None:
            self._broker = RedisBroker(url=settings.DRAMATIQ_REDIS_URL)
        return self._broker

    def enqueue(self, name: str, *args, delay_seconds: int = 0) -> str:
        message = dramatiq.Message(
            queue_name=name,
            actor_name=name,
            args=args,
            kwargs={},
            options={},
        )
        self.broker.enqueue(message, delay=delay_seconds * 1000 if delay_seconds else None)
        logger.info("Queued job %s (%s) delay=%ss", name, message.message_id, delay_seconds)
        return message.message_id


def defer(jobs: JobQueue, name: str, *args, delay_seconds: int = 0) -> str | None:
    """Fire-and-forget enqueue; a queue outage never fails the calling transition."""
    try:
        return jobs.enqueue(name, *args, delay_seconds=delay_seconds)
    except Exception:
        logger.exception("Failed to queue job %s", name)
        return None
