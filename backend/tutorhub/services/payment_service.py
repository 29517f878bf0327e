"""
Payment reversal

The payment status, the fee balances, the reversal record and the audit row
are written in one transaction.
"""
import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..exceptions import EntityNotFoundError, PaymentReversalError
from ..models.payment import Payment, PaymentReversal, StudentFee
from ..utils.helpers import isoformat_utc, utcnow
from .audit_service import record_audit

logger = logging.getLogger(__name__)


def fee_status(amount: Decimal, amount_paid: Decimal) -> str:
    if amount_paid <= 0:
        return "unpaid"
    if amount_paid >= amount:
        return "paid"
    return "partial"


def reverse_payment(
    db: Session,
    payment_id: str,
    reason: str,
    reversed_by: str,
    center_id: Optional[str] = None,
    ip_address: Optional[str] = None
) -> PaymentReversal:
    """
    Reverse a completed payment and give back its fee allocations.

    `center_id` scopes the lookup; None (super admin) sees every center.

    Raises:
        EntityNotFoundError: payment missing or outside the center
        PaymentReversalError: payment already reversed
        SQLAlchemyError: storage failure, nothing written
    """
    reason = (reason or "").strip()
    if not reason:
        raise PaymentReversalError("Reversal reason is required")

    now = utcnow()
    try:
        query = db.query(Payment).filter(Payment.id == payment_id)
        if center_id is not None:
            query = query.filter(Payment.center_id == center_id)
        payment = query.with_for_update().first()

        if payment is None:
            raise EntityNotFoundError("Payment not found")
        if payment.status == "reversed":
            raise PaymentReversalError("Payment has already been reversed")

        previous_status = payment.status
        payment.status = "reversed"
        payment.notes = f"{payment.notes or ''}\n\n[REVERSED] {isoformat_utc(now)}: {reason}".strip()
        payment.updated_at = now

        fee_changes = []
        for allocation in payment.allocations:
            fee = db.query(StudentFee).filter(StudentFee.id == allocation.fee_id).with_for_update().first()
            if fee is None:
                continue
            previous_paid = Decimal(fee.amount_paid or 0)
            fee.amount_paid = max(Decimal("0"), previous_paid - Decimal(allocation.amount))
            fee.status = fee_status(Decimal(fee.amount), fee.amount_paid)
            fee.updated_at = now
            fee_changes.append({
                "fee_id": fee.id,
                "amount_paid_before": str(previous_paid),
                "amount_paid_after": str(fee.amount_paid),
                "status": fee.status,
            })

        reversal = PaymentReversal(
            original_payment_id=payment.id,
            center_id=payment.center_id,
            student_id=payment.student_id,
            amount=payment.amount,
            reason=reason,
            reversed_by=reversed_by,
            reversed_at=now
        )
        db.add(reversal)

        record_audit(
            db,
            action="reverse",
            entity_type="payment",
            entity_id=payment.id,
            center_id=payment.center_id,
            user_id=reversed_by,
            old_values={"status": previous_status},
            new_values={"status": "reversed", "reason": reason, "fees": fee_changes},
            ip_address=ip_address
        )
        db.commit()
    except (EntityNotFoundError, PaymentReversalError, SQLAlchemyError):
        db.rollback()
        raise

    logger.info(f"Payment {payment_id} reversed by {reversed_by} ({len(fee_changes)} fee allocation(s) restored)")
    return reversal
