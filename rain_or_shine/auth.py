import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from .deps import get_current_user, get_strava_client, get_user_repository
from .models import User
from .repositories import UserRepository
from .services.strava_client import StravaClient

router = APIRouter()
logger = logging.getLogger(__name__)

@router.delete("/revoke")
async def revoke_strava_access(
    user: User = Depends(get_current_user),
    users: UserRepository = Depends(get_user_repository),
    strava: StravaClient = Depends(get_strava_client),
):
    """
    Disconnect from Strava and permanently delete the account and its preferences.
    """
    logger.info(f"Revoking Strava access for user {user.id}")

    if user.access_token:
        # Best-effort: the account is deleted even if Strava rejects this
        await strava.revoke_token(user.access_token)

    users.delete(user.id)

    response = JSONResponse(content={"success": True, "message": "Account deleted successfully"})
    response.delete_cookie("session_token")
    return response
