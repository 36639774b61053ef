import logging
import uuid

import dramatiq

from core.get_db import session_scope
from core.job_queue import (
    CLOSE_RETRACTION_WINDOWS,
    PURGE_SIGNING_SECRETS,
    SEAL_CONTRACT,
    SWEEP_NOTICE_PERIODS,
)
from services.contract_service import ContractLifecycle

logger = logging.getLogger("jobs.contracts")


def create_seal_contract_task():
    @dramatiq.actor(
        actor_name=SEAL_CONTRACT,
        queue_name=SEAL_CONTRACT,
        max_retries=3,
        time_limit=600_000,
    )
    async def seal_contract(contract_id: str, job_token: str):
        async with session_scope() as db:
            return await ContractLifecycle(db).seal(uuid.UUID(contract_id), job_token)

    return seal_contract


def create_notice_sweep_task():
    @dramatiq.actor(
        actor_name=SWEEP_NOTICE_PERIODS,
        queue_name=SWEEP_NOTICE_PERIODS,
        max_retries=3,
        time_limit=600_000,
    )
    async def sweep_notice_periods():
        async with session_scope() as db:
            result = await ContractLifecycle(db).sweep_notice_periods()
        logger.info(
            "Notice sweep: terminated=%s awaiting_confirmation=%s",
            len(result["terminated"]),
            len(result["awaiting_confirmation"]),
        )
        return result

    return sweep_notice_periods


def create_purge_signing_secrets_task():
    @dramatiq.actor(
        actor_name=PURGE_SIGNING_SECRETS,
        queue_name=PURGE_SIGNING_SECRETS,
        max_retries=3,
        time_limit=600_000,
    )
    async def purge_signing_secrets():
        async with session_scope() as db:
            return await ContractLifecycle(db).purge_expired_signing_secrets()

    return purge_signing_secrets


def create_close_retraction_windows_task():
    @dramatiq.actor(
        actor_name=CLOSE_RETRACTION_WINDOWS,
        queue_name=CLOSE_RETRACTION_WINDOWS,
        max_retries=3,
        time_limit=600_000,
    )
    async def close_retraction_windows():
        async with session_scope() as db:
            result = await ContractLifecycle(db).close_retraction_windows()
        logger.info(
            "Retraction check: closed=%s reminded=%s",
            len(result["closed"]),
            len(result["reminded"]),
        )
        return result

    return close_retraction_windows
