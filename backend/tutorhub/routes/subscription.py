"""
Subscription sync, tier limits and downgrades
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..database import get_db
from ..exceptions import ConfigurationError, DowngradeBlockedError, EntityNotFoundError, PaymentProviderError
from ..models.center import TutorialCenter
from ..schemas.subscription import DowngradeRequest
from ..services.stripe_service import StripeClient, get_stripe_client, request_downgrade, sync_subscription
from ..services.subscription_limits import (
    MODULES,
    PLAN_LIMITS,
    check_module_access,
    check_staff_limit,
    check_student_limit,
    get_staff_limit_message,
    get_student_limit_message,
)
from ..utils.security import AuthenticatedUser, Capability, require_capability, require_center

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/subscription", tags=["Subscription"])


def get_center_or_404(db: Session, center_id: str) -> TutorialCenter:
    center = db.query(TutorialCenter).filter(TutorialCenter.id == center_id).first()
    if center is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Center not found")
    return center


@router.post("/sync")
def sync(
    current_user: AuthenticatedUser = Depends(require_capability(Capability.MANAGE_SUBSCRIPTION)),
    db: Session = Depends(get_db),
    client: StripeClient = Depends(get_stripe_client)
):
    """Pull the latest subscription state from Stripe onto the center"""
    center = get_center_or_404(db, require_center(current_user))

    try:
        result = sync_subscription(db, center, client)
    except ConfigurationError as e:
        logger.error(f"Subscription sync misconfigured: {e}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Payment processor is not configured")
    except PaymentProviderError as e:
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={"synced": False, "error": f"Failed to sync subscription: {e.message}"}
        )
    except SQLAlchemyError as e:
        logger.error(f"Failed to update subscription for center {center.id}: {e}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to update subscription")

    if not result.synced:
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": result.message, "synced": False})
    return result.to_dict()


@router.get("/limits")
async def get_limits(
    current_user: AuthenticatedUser = Depends(require_capability(Capability.VIEW_SUBSCRIPTION)),
    db: Session = Depends(get_db)
):
    center = get_center_or_404(db, require_center(current_user))

    students = check_student_limit(db, center.id)
    staff = check_staff_limit(db, center.id)

    return {
        "tier": students.tier,
        "status": center.subscription_status,
        "students": {**students.to_dict(), "message": get_student_limit_message(students)},
        "staff": {**staff.to_dict(), "message": get_staff_limit_message(staff)},
        "modules": {module: check_module_access(db, center.id, module).to_dict() for module in MODULES},
        "plans": {
            tier: {"maxStudents": limits["max_students"], "maxStaff": limits["max_staff"]}
            for tier, limits in PLAN_LIMITS.items()
        },
    }


@router.post("/downgrade")
def downgrade(
    payload: DowngradeRequest,
    current_user: AuthenticatedUser = Depends(require_capability(Capability.MANAGE_SUBSCRIPTION)),
    db: Session = Depends(get_db),
    client: StripeClient = Depends(get_stripe_client)
):
    """
    Switch to a lower plan.

    Rejected with 409 while the center has more active staff than the
    target plan allows; nothing changes in that case.
    """
    center = get_center_or_404(db, require_center(current_user))

    try:
        result = request_downgrade(db, center, payload.target_tier, client, requested_by=current_user.id)
    except DowngradeBlockedError as e:
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content={"success": False, "error": e.message, **e.details}
        )
    except (ValueError, EntityNotFoundError) as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except ConfigurationError as e:
        logger.error(f"Downgrade misconfigured: {e}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=e.message)
    except PaymentProviderError as e:
        return JSONResponse(status_code=status.HTTP_502_BAD_GATEWAY, content={"success": False, "error": e.message})
    except SQLAlchemyError as e:
        logger.error(f"Failed to persist downgrade for center {center.id}: {e}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to update subscription")

    return {"success": True, **result}
