from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
import logging

from ..database import get_db
from ..exceptions import EntityNotFoundError, PaymentReversalError
from ..schemas.payments import ReversePaymentRequest
from ..services.payment_service import reverse_payment
from ..utils.helpers import get_client_ip
from ..utils.security import AuthenticatedUser, Capability, require_capability, require_center

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])


@router.post("/reverse")
async def reverse(
    request: Request,
    payload: ReversePaymentRequest,
    current_user: AuthenticatedUser = Depends(require_capability(Capability.REVERSE_PAYMENTS)),
    db: Session = Depends(get_db)
):
    """Reverse a payment and restore the fee balances it paid off"""
    try:
        reversal = reverse_payment(
            db,
            payload.payment_id,
            payload.reason,
            reversed_by=current_user.id,
            center_id=None if current_user.is_super_admin else require_center(current_user),
            ip_address=get_client_ip(request)
        )
    except EntityNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    except PaymentReversalError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    except SQLAlchemyError as e:
        logger.error(f"Payment reversal failed for {payload.payment_id}: {e}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to reverse payment")

    return {
        "success": True,
        "message": "Payment reversed successfully",
        "paymentId": payload.payment_id,
        "reversalId": reversal.id,
    }
