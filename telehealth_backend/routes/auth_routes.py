from fastapi import APIRouter, Depends

from telehealth_backend.auth.context import AuthContext
from telehealth_backend.auth.dependencies import get_current_user

router = APIRouter(tags=['auth'])


@router.get("/me")
def me(current_user: AuthContext = Depends(get_current_user)):
    return {"user_id": current_user.user_id, "role": current_user.role}
