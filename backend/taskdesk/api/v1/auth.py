"""Authentication endpoints: register, login and the caller's profile."""

from datetime import datetime
from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile, status
from fastapi.responses import FileResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from taskdesk.config import get_settings
from taskdesk.db.session import get_db_session
from taskdesk.exceptions import AuthenticationError
from taskdesk.models.user import User
from taskdesk.services.access_control import Principal
from taskdesk.services.avatars import AvatarService
from taskdesk.services.security import create_access_token, decode_access_token
from taskdesk.services.users import UserService
from taskdesk.utils.json_fields import coerce_id

router = APIRouter()
logger = structlog.get_logger()
settings = get_settings()
security = HTTPBearer(auto_error=False)


class RegisterRequest(BaseModel):
    """Public sign-up."""

    name: str = Field(..., min_length=1, max_length=120)
    email: str = Field(..., min_length=3, max_length=191)
    password: str = Field(..., min_length=1)
    profile_image_url: str | None = None
    admin_invite_token: str | None = None


class LoginRequest(BaseModel):
    email: str
    password: str


class ProfileUpdate(BaseModel):
    """Changes to the caller's own profile."""

    name: str | None = Field(None, min_length=1, max_length=120)
    profile_image_url: str | None = None
    current_password: str | None = None
    new_password: str | None = None


class UserResponse(BaseModel):
    """User information response."""

    id: int
    name: str
    email: str
    role: str
    profile_image_url: str | None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class TokenResponse(BaseModel):
    """JWT token response with the authenticated user."""

    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserResponse


class ProfileUpdateResponse(BaseModel):
    user: UserResponse
    password_changed: bool


def _token_response(user: User) -> TokenResponse:
    return TokenResponse(
        access_token=create_access_token(user.id, user.role),
        expires_in=settings.jwt_access_token_expire_minutes * 60,
        user=UserResponse.model_validate(user),
    )


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    db: AsyncSession = Depends(get_db_session),
) -> User:
    """Get the current authenticated user from the bearer token."""
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = decode_access_token(credentials.credentials)
    user_id = coerce_id(payload.get("sub"))
    user = await db.get(User, user_id) if user_id is not None else None
    if user is None:
        raise AuthenticationError("User not found")
    return user


CurrentUser = Annotated[User, Depends(get_current_user)]


async def get_current_principal(current_user: CurrentUser) -> Principal:
    """The caller as an explicit principal for the service layer.

    The role is read from the stored user, not the token, so role changes
    apply immediately.
    """
    return Principal.from_user(current_user)


CurrentPrincipal = Annotated[Principal, Depends(get_current_principal)]


async def require_admin_principal(principal: CurrentPrincipal) -> Principal:
    if not principal.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
    return principal


AdminPrincipal = Annotated[Principal, Depends(require_admin_principal)]


@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
async def register(
    body: RegisterRequest,
    db: AsyncSession = Depends(get_db_session),
) -> TokenResponse:
    """Create an account. The admin role requires a valid invite token."""
    user = await UserService(db).register(
        name=body.name,
        email=body.email,
        password=body.password,
        profile_image_url=body.profile_image_url,
        admin_invite_token=body.admin_invite_token,
    )
    return _token_response(user)


@router.post("/login", response_model=TokenResponse)
async def login(
    body: LoginRequest,
    db: AsyncSession = Depends(get_db_session),
) -> TokenResponse:
    user = await UserService(db).authenticate(body.email, body.password)
    logger.info("user_logged_in", user_id=user.id)
    return _token_response(user)


@router.get("/profile", response_model=UserResponse)
async def get_profile(current_user: CurrentUser) -> User:
    """Get current user information."""
    return current_user


@router.put("/profile", response_model=ProfileUpdateResponse)
async def update_profile(
    body: ProfileUpdate,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db_session),
) -> ProfileUpdateResponse:
    """Update name/avatar; changing the password requires the current one."""
    service = UserService(db)
    fields = body.model_fields_set

    if body.new_password is not None:
        await service.change_password(
            current_user,
            body.new_password,
            current_password=body.current_password,
            require_current=True,
        )
    user = await service.update_profile(
        current_user,
        name=body.name,
        profile_image_url=body.profile_image_url,
        clear_profile_image="profile_image_url" in fields and body.profile_image_url is None,
    )
    return ProfileUpdateResponse(
        user=UserResponse.model_validate(user),
        password_changed=body.new_password is not None,
    )


class ImageUploadResponse(BaseModel):
    image_url: str


@router.post("/upload-image", response_model=ImageUploadResponse)
async def upload_image(
    request: Request,
    image: UploadFile | None = File(None),
) -> ImageUploadResponse:
    """Store a profile image and return the URL it is served from.

    Open to anonymous callers so sign-up can attach an avatar.
    """
    stored_name = await AvatarService().store(image)
    image_url = request.url_for("get_profile_image", file_name=stored_name)
    return ImageUploadResponse(image_url=str(image_url))


@router.get("/images/{file_name}", name="get_profile_image")
async def get_profile_image(file_name: str) -> FileResponse:
    return FileResponse(AvatarService().path_for(file_name))
