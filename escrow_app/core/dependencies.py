from dataclasses import dataclass, field

from sms_notify.whatsapp_service import NotificationDispatcher, whatsapp

from .clock import SystemClock, system_clock
from .distributed_lock import DistributedLock, build_distributed_lock
from .get_provider import ProviderResolver
from .job_queue import DramatiqJobQueue, JobQueue
from .pdf_generate import DocumentStore, LocalDocumentStore
from .settings import settings


@dataclass
class Collaborators:
    """External services the engine talks to through narrow interfaces."""

    jobs: JobQueue
    documents: DocumentStore
    locks: DistributedLock
    notifier: NotificationDispatcher
    providers: ProviderResolver
    clock: SystemClock = field(default=system_clock)
    provider_timeout: float = settings.PROVIDER_TIMEOUT_SECONDS


_collaborators: Collaborators | None = None


def get_collaborators() -> Collaborators:
    global _collaborators
    if _collaborators is None:
        _collaborators = Collaborators(
            jobs=DramatiqJobQueue(),
            documents=LocalDocumentStore(),
            locks=build_distributed_lock(),
            notifier=whatsapp,
            providers=ProviderResolver(),
        )
    return _collaborators
