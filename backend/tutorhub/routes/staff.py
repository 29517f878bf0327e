from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
import logging

from ..database import get_db
from ..exceptions import LimitExceededError
from ..models.user import User
from ..services.audit_service import record_audit
from ..services.subscription_limits import enforce_staff_limit
from ..utils.security import AuthenticatedUser, Capability, UserRole, require_capability, verify_center_access

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/staff", tags=["Staff"])


def get_staff_member(db: Session, user_id: str, current_user: AuthenticatedUser) -> User:
    member = db.query(User).filter(User.id == user_id).first()
    if member is None or not verify_center_access(current_user, member.center_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Staff member not found")
    if member.role != UserRole.CENTER_STAFF.value:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Only center staff can be activated or deactivated")
    return member


def set_active(db: Session, member: User, is_active: bool, current_user: AuthenticatedUser):
    previous = member.is_active
    try:
        member.is_active = is_active
        record_audit(
            db,
            action="update",
            entity_type="user",
            entity_id=member.id,
            center_id=member.center_id,
            user_id=current_user.id,
            old_values={"is_active": previous},
            new_values={"is_active": is_active}
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to update staff member {member.id}: {e}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to update staff member")


@router.patch("/{user_id}/activate")
async def activate_staff(
    user_id: str,
    current_user: AuthenticatedUser = Depends(require_capability(Capability.MANAGE_STAFF)),
    db: Session = Depends(get_db)
):
    """Reactivate a staff member if the plan has room"""
    member = get_staff_member(db, user_id, current_user)
    if member.is_active:
        return {"success": True, "id": member.id, "isActive": True}

    try:
        enforce_staff_limit(db, member.center_id)
    except LimitExceededError as e:
        return JSONResponse(
            status_code=status.HTTP_403_FORBIDDEN,
            content={"error": e.message, "limit": e.details}
        )

    set_active(db, member, True, current_user)
    logger.info(f"Staff member {member.id} activated by {current_user.id}")
    return {"success": True, "id": member.id, "isActive": True}


@router.patch("/{user_id}/deactivate")
async def deactivate_staff(
    user_id: str,
    current_user: AuthenticatedUser = Depends(require_capability(Capability.MANAGE_STAFF)),
    db: Session = Depends(get_db)
):
    member = get_staff_member(db, user_id, current_user)
    if member.is_active:
        set_active(db, member, False, current_user)
        logger.info(f"Staff member {member.id} deactivated by {current_user.id}")
    return {"success": True, "id": member.id, "isActive": False}
