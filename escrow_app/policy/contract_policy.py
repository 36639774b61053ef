from core.errors import NotAuthorized
from core.get_current_user import Actor
from models.enums import Party
from models.models import Contract, Payment


class ContractPolicy:
    @staticmethod
    def party(contract: Contract, actor: Actor) -> Party | None:
        return contract.party_of(actor.id)

    @staticmethod
    def require_participant(contract: Contract, actor: Actor) -> Party | None:
        """The signing party of the actor, or None for an admin acting on behalf."""
        party = contract.party_of(actor.id)
        if party is None and not actor.is_admin:
            raise NotAuthorized()
        return party

    @staticmethod
    def require_party(contract: Contract, actor: Actor) -> Party:
        party = contract.party_of(actor.id)
        if party is None:
            raise NotAuthorized()
        return party

    @staticmethod
    def require_landlord_or_admin(contract: Contract, actor: Actor) -> None:
        if actor.id != contract.landlord_id and not actor.is_admin:
            raise NotAuthorized()

    @staticmethod
    def require_can_cancel(contract: Contract, actor: Actor) -> None:
        if actor.is_admin:
            return
        party = contract.party_of(actor.id)
        if party is Party.LANDLORD:
            return
        if party is Party.TENANT and not contract.has_signed(Party.TENANT):
            return
        raise NotAuthorized()


class PaymentPolicy:
    @staticmethod
    def require_involved(payment: Payment, actor: Actor) -> None:
        if actor.is_admin:
            return
        if actor.id not in {payment.payer_id, payment.beneficiary_id}:
            raise NotAuthorized()

    @staticmethod
    def require_beneficiary(payment: Payment, actor: Actor) -> None:
        if actor.id != payment.beneficiary_id:
            raise NotAuthorized()
