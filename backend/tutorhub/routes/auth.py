from fastapi import APIRouter, Depends

from ..utils.security import AuthenticatedUser, get_current_user

router = APIRouter(prefix="/auth", tags=["Authentication"])


@router.get("/me")
async def get_me(current_user: AuthenticatedUser = Depends(get_current_user)):
    """Resolved staff context for the current session"""
    return current_user.to_dict()
