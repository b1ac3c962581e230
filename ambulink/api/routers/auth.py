from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from ambulink.domain.models import DevTokenRequest, TokenResponse
from ambulink.infra.auth import create_access_token
from ambulink.services.errors import ForbiddenError, NotFoundError
from ambulink.services.user_service import UserService

router = APIRouter()


def get_user_service() -> UserService:
    return UserService()


Service = Annotated[UserService, Depends(get_user_service)]


@router.post("/dev-token", response_model=TokenResponse)
def dev_token(payload: DevTokenRequest, service: Service) -> TokenResponse:
    try:
        user, organization = service.resolve_login(payload.user_id)
    except (NotFoundError, ForbiddenError) as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    token = create_access_token(
        user_id=user.id,
        role=user.role,
        organization_id=organization.id,
        organization_type=organization.type,
    )
    return TokenResponse(access_token=token, role=user.role, organization_id=organization.id)
