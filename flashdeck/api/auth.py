from fastapi import APIRouter, Depends

from flashdeck.core.auth import get_current_user_id
from flashdeck.core.errors import NotFoundError
from flashdeck.features.users import service
from flashdeck.models.user import LoginRequest, RegisterRequest, TokenResponse


router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/register", response_model=TokenResponse, status_code=201)
def register(payload: RegisterRequest):
    return service.register(payload)


@router.post("/login", response_model=TokenResponse)
def login(payload: LoginRequest):
    return service.login(payload.email, payload.password)


@router.get("/me")
def me(user_id: int = Depends(get_current_user_id)):
    user = service.get_user(user_id)
    if user is None:
        raise NotFoundError("User not found")
    return service.public_user(user)
