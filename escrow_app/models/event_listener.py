from sqlalchemy import event, inspect

from core.clock import system_clock
from core.errors import InvariantViolation
from security.security_generate import security_generate

from .models import TERM_COLUMNS, Contract, Payment


@event.listens_for(Contract, "before_insert")
def set_contract_reference(mapper, connection, target: Contract):
    if not target.reference:
        year = (target.created_at or system_clock.now()).year
        target.reference = security_generate.contract_reference(year)


@event.listens_for(Payment, "before_insert")
def set_payment_reference(mapper, connection, target: Payment):
    if not target.reference:
        target.reference = security_generate.payment_reference()


@event.listens_for(Contract, "before_insert")
@event.listens_for(Contract, "before_update")
def check_active_contract(mapper, connection, target: Contract):
    target.check_active_invariant()


@event.listens_for(Contract, "before_update")
def freeze_locked_terms(mapper, connection, target: Contract):
    state = inspect(target)
    lock_history = state.attrs.is_locked.history
    was_locked = lock_history.deleted[0] if lock_history.deleted else target.is_locked
    if not was_locked:
        return

    changed = [
        name for name in TERM_COLUMNS if state.attrs[name].history.has_changes()
    ]
    if changed:
        raise InvariantViolation(
            f"Contract {target.reference} is locked; refused change to {', '.join(changed)}"
        )


@event.listens_for(Contract, "before_delete")
def refuse_signed_delete(mapper, connection, target: Contract):
    if target.signature_count:
        raise InvariantViolation(
            f"Contract {target.reference} carries a signature and cannot be deleted"
        )


@event.listens_for(Payment, "before_insert")
@event.listens_for(Payment, "before_update")
def check_payment_amounts(mapper, connection, target: Payment):
    target.check_amounts()
