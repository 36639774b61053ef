import uuid

import dramatiq

from core.get_db import session_scope
from core.job_queue import GENERATE_RECEIPT
from services.escrow_payment_service import EscrowPaymentEngine


def create_receipt_task():
    @dramatiq.actor(
        actor_name=GENERATE_RECEIPT,
        queue_name=GENERATE_RECEIPT,
        max_retries=3,
        time_limit=600_000,
    )
    async def generate_payment_receipt(payment_id: str):
        async with session_scope() as db:
            return await EscrowPaymentEngine(db).generate_receipt(uuid.UUID(payment_id))

    return generate_payment_receipt
