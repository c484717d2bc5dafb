"""Current-user endpoint."""
from fastapi import APIRouter, Depends
from pydantic import BaseModel

from api.dependencies import CurrentUser, get_current_user


router = APIRouter(prefix="/users", tags=["users"])


class UserResponse(BaseModel):
    """Response model for user info."""

    id: str
    email: str | None
    name: str | None


@router.get("/me", response_model=UserResponse)
async def get_me(current_user: CurrentUser = Depends(get_current_user)) -> UserResponse:
    """Get the current authenticated user's info."""
    identity = current_user.identity
    return UserResponse(id=identity.id, email=identity.email, name=identity.name)
