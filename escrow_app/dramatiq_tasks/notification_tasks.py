import dramatiq

from core.dependencies import get_collaborators
from core.job_queue import NOTIFY_PARTY


def create_notify_party_task():
    @dramatiq.actor(
        actor_name=NOTIFY_PARTY,
        queue_name=NOTIFY_PARTY,
        max_retries=3,
        time_limit=60_000,
    )
    async def notify_party(party_id: str, kind: str, payload: dict):
        return await get_collaborators().notifier.notify(party_id, kind, payload)

    return notify_party
