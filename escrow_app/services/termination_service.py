import logging
import uuid

from core.date_helper import days_until
from core.dependencies import Collaborators
from core.errors import StateConflict
from core.get_current_user import Actor
from models.enums import ContractStatus, Party
from models.models import Contract

from .contract_service import ContractLifecycle

logger = logging.getLogger(__name__)


class TerminationWorkflow:
    def __init__(self, db, collaborators: Collaborators | None = None):
        self.lifecycle = ContractLifecycle(db, collaborators)
        self.clock = self.lifecycle.clock

    def view(self, contract: Contract) -> dict:
        has_request = contract.termination_requested_at is not None
        is_terminated = contract.status == ContractStatus.TERMINATED
        return {
            "contract_id": str(contract.id),
            "reference": contract.reference,
            "status": contract.status.value,
            "has_request": has_request,
            "is_pending": contract.has_pending_termination,
            "is_terminated": is_terminated,
            "requested_at": contract.termination_requested_at,
            "requested_by": contract.termination_requested_by,
            "motive": contract.termination_motive,
            "notice_months": contract.notice_months,
            "effective_date": contract.termination_effective_date,
            "is_confirmed": contract.termination_confirmed_at is not None,
            "confirmed_at": contract.termination_confirmed_at,
            "confirmed_by": contract.termination_confirmed_by,
            "days_remaining": (
                days_until(contract.termination_effective_date, self.clock.today())
                if contract.has_pending_termination
                else 0
            ),
        }

    async def request(
        self,
        contract_id: uuid.UUID,
        actor: Actor,
        motive: str,
        notice_months: int | None = None,
    ) -> dict:
        current = await self.lifecycle.get(contract_id, actor)
        if current.has_pending_termination and current.termination_requested_by == actor.id:
            raise StateConflict(
                "You already have a pending termination request on this contract.",
                code="TERMINATION_ALREADY_PENDING",
            )

        contract = await self.lifecycle.request_termination(
            contract_id, actor, motive, notice_months
        )
        requester = contract.party_of(actor.id)
        self.lifecycle.notify(
            contract,
            requester.other,
            "termination_requested",
            motive=contract.termination_motive,
            effective_date=contract.termination_effective_date,
        )
        return self.view(contract)

    async def confirm(self, contract_id: uuid.UUID, actor: Actor) -> dict:
        contract = await self.lifecycle.confirm_termination(contract_id, actor)
        for party in Party:
            if contract.column_value(party, "party_id") != actor.id:
                self.lifecycle.notify(
                    contract,
                    party,
                    "termination_confirmed",
                )
        return self.view(contract)

    async def status(self, contract_id: uuid.UUID, actor: Actor) -> dict:
        contract = await self.lifecycle.get(contract_id, actor)
        return self.view(contract)
