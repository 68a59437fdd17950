# Profile shortcuts for the signed-in user

from fastapi import APIRouter, Depends

from ..db import get_db
from ..models import ProfileUpdate, UserResponse
from ..security import get_current_user, user_to_response
from .auth import apply_profile_update

router = APIRouter(prefix="/api/users", tags=["users"])

@router.get("/profile", response_model=UserResponse)
async def get_profile(user=Depends(get_current_user)):
    return user_to_response(user)

@router.put("/profile", response_model=UserResponse)
async def update_profile(update: ProfileUpdate, user=Depends(get_current_user), db=Depends(get_db)):
    return user_to_response(await apply_profile_update(user, update, db))
