"""
Portal access tokens for the student/teacher/parent self-service portals
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..database import get_db
from ..exceptions import EntityNotFoundError, PortalTokenConfigError
from ..limiter import limiter
from ..models.center import TutorialCenter
from ..schemas.portal import ENTITY_TYPES, GenerateTokenRequest, RevokeTokenRequest, ValidateTokenRequest
from ..services.email_service import render_portal_link_email
from ..services.notification_service import NotificationSenders, get_notification_senders
from ..services.portal_token_service import PortalTokenService
from ..services.sms_service import build_center_sms
from ..utils.helpers import get_client_ip, isoformat_utc
from ..utils.portal_tokens import build_portal_url
from ..utils.security import AuthenticatedUser, Capability, require_capability, require_center

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/portal", tags=["Portal Access"])


def get_portal_token_service(db: Session = Depends(get_db)) -> PortalTokenService:
    return PortalTokenService(db)


def send_portal_link(
    senders: NotificationSenders,
    entity,
    center: TutorialCenter,
    portal_url: str,
    expires_in_days: int,
    channel: str
):
    """Best effort: delivery problems are logged, never raised"""
    if channel in ("sms", "both") and entity.phone:
        message = build_center_sms(center.name, f"Your portal access link is ready. Click here to access: {portal_url}")
        try:
            result = senders.sms.send(entity.phone, message)
            if not result.success:
                logger.warning(f"Portal link SMS to {entity.id} failed: {result.error}")
        except Exception as e:
            logger.error(f"Portal link SMS to {entity.id} raised: {e}")

    if channel in ("email", "both") and entity.email:
        html_body = render_portal_link_email(entity.full_name, center.name, portal_url, expires_in_days)
        try:
            result = senders.email.send(entity.email, f"{center.name} - Portal Access Link", html_body)
            if not result.success:
                logger.warning(f"Portal link email to {entity.id} failed: {result.error}")
        except Exception as e:
            logger.error(f"Portal link email to {entity.id} raised: {e}")


@router.post("/generate-token")
@limiter.limit("30/minute")
def generate_token(
    request: Request,
    payload: GenerateTokenRequest,
    current_user: AuthenticatedUser = Depends(require_capability(Capability.MANAGE_PORTAL_TOKENS)),
    service: PortalTokenService = Depends(get_portal_token_service),
    senders: NotificationSenders = Depends(get_notification_senders)
):
    """
    Issue a portal token for a student or teacher in the caller's center.

    Any previous active token for the entity is revoked in the same
    transaction. Optionally sends the portal link by SMS and/or email.
    """
    center_id = require_center(current_user)

    try:
        issued = service.issue(
            payload.entity_type,
            payload.entity_id,
            center_id,
            expires_in_days=payload.expires_in_days,
            created_by=current_user.id,
            created_ip=get_client_ip(request)
        )
    except EntityNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{payload.entity_type.capitalize()} not found"
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except PortalTokenConfigError as e:
        logger.error(f"Portal token configuration error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Portal tokens are not configured"
        )
    except SQLAlchemyError as e:
        logger.error(f"Failed to store portal token: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to generate token"
        )

    portal_url = build_portal_url(payload.entity_type, issued.token)

    if payload.send_notification:
        entity = service.get_entity(payload.entity_type, payload.entity_id, center_id)
        center = service.db.query(TutorialCenter).filter(TutorialCenter.id == center_id).first()
        if entity is not None and center is not None:
            send_portal_link(senders, entity, center, portal_url, issued.expires_in_days, payload.notification_channel)

    return {
        "success": True,
        "token": issued.token,
        "portalUrl": portal_url,
        "expiresAt": isoformat_utc(issued.expires_at),
        "expiresInDays": issued.expires_in_days,
    }


@router.post("/validate-token")
@limiter.limit("60/minute")
async def validate_token(
    request: Request,
    payload: ValidateTokenRequest,
    service: PortalTokenService = Depends(get_portal_token_service)
):
    """
    Public endpoint used by the portals on every page load.

    Validation failures are answers, not transport errors: they return 200
    with `valid: false` and a reason.
    """
    if not payload.token:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"valid": False, "error": "Token is required"}
        )

    try:
        decision = service.validate(
            payload.token,
            expected_entity_type=payload.entity_type,
            ip_address=get_client_ip(request),
            user_agent=request.headers.get("user-agent"),
            page_path=payload.page_path
        )
    except Exception:
        logger.exception("Portal token validation error")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"valid": False, "error": "Validation failed"}
        )

    return decision.to_response()


@router.post("/revoke-token")
async def revoke_token(
    payload: RevokeTokenRequest,
    current_user: AuthenticatedUser = Depends(require_capability(Capability.MANAGE_PORTAL_TOKENS)),
    service: PortalTokenService = Depends(get_portal_token_service)
):
    center_id = require_center(current_user)

    if not payload.revoke_all and not payload.token_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="tokenId is required when revokeAll is false"
        )

    try:
        revoked_count = service.revoke(
            payload.entity_type,
            payload.entity_id,
            center_id,
            token_id=None if payload.revoke_all else payload.token_id,
            revoked_by=current_user.id
        )
    except SQLAlchemyError as e:
        logger.error(f"Failed to revoke portal tokens: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to revoke token"
        )

    return {"success": True, "revokedCount": revoked_count}


@router.get("/tokens/{entity_type}/{entity_id}")
async def list_entity_tokens(
    entity_type: str,
    entity_id: str,
    current_user: AuthenticatedUser = Depends(require_capability(Capability.MANAGE_PORTAL_TOKENS)),
    service: PortalTokenService = Depends(get_portal_token_service)
):
    """Token history for one entity, newest first"""
    center_id = require_center(current_user)
    if entity_type not in ENTITY_TYPES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid entity type")

    return {"success": True, "tokens": service.list_tokens(entity_type, entity_id, center_id)}
