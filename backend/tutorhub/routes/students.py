from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
import logging

from ..database import get_db
from ..exceptions import LimitExceededError
from ..models.student import Student
from ..schemas.students import StudentCreate
from ..services.audit_service import record_audit
from ..services.subscription_limits import enforce_student_limit
from ..utils.security import AuthenticatedUser, Capability, require_capability, require_center

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/students", tags=["Students"])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_student(
    payload: StudentCreate,
    current_user: AuthenticatedUser = Depends(require_capability(Capability.MANAGE_STUDENTS)),
    db: Session = Depends(get_db)
):
    """Add an active student, within the center's plan limit"""
    center_id = require_center(current_user)

    try:
        enforce_student_limit(db, center_id)
    except LimitExceededError as e:
        return JSONResponse(
            status_code=status.HTTP_403_FORBIDDEN,
            content={"error": e.message, "limit": e.details}
        )

    student = Student(
        center_id=center_id,
        full_name=payload.full_name,
        email=payload.email,
        phone=payload.phone,
        student_number=payload.student_number,
        grade=payload.grade,
        class_id=payload.class_id,
        status="active"
    )
    try:
        db.add(student)
        db.flush()
        record_audit(
            db,
            action="create",
            entity_type="student",
            entity_id=student.id,
            center_id=center_id,
            user_id=current_user.id,
            new_values={"full_name": student.full_name, "student_number": student.student_number}
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to create student: {e}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to create student")

    return {
        "success": True,
        "student": {
            "id": student.id,
            "fullName": student.full_name,
            "email": student.email,
            "phone": student.phone,
            "studentNumber": student.student_number,
            "grade": student.grade,
            "status": student.status,
        },
    }
