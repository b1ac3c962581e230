from __future__ import annotations

from collections.abc import Callable
from typing import Annotated, NoReturn

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer

from ambulink.domain.access import Principal
from ambulink.domain.permissions import has_permission
from ambulink.infra.auth import decode_access_token, principal_from_claims
from ambulink.infra.request_context import bind_user
from ambulink.services.errors import (
    ConflictError,
    ForbiddenError,
    InternalError,
    InvalidStateError,
    NotFoundError,
    ServiceError,
)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/dev-token")


def get_current_principal(
    request: Request,
    token: str = Depends(oauth2_scheme),
) -> Principal:
    try:
        principal = principal_from_claims(decode_access_token(token))
    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
        ) from exc
    request.state.principal = principal
    bind_user(principal.id)
    return principal


def require_perm(permission: str) -> Callable[[Principal], Principal]:
    def _checker(
        principal: Annotated[Principal, Depends(get_current_principal)],
    ) -> Principal:
        if not has_permission(principal.role, permission):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing permission: {permission}",
            )
        return principal

    return _checker


CurrentPrincipal = Annotated[Principal, Depends(get_current_principal)]

_STATUS_BY_ERROR: tuple[tuple[type[ServiceError], int], ...] = (
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (InvalidStateError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (ConflictError, status.HTTP_409_CONFLICT),
    (ForbiddenError, status.HTTP_403_FORBIDDEN),
)


def handle_service_error(exc: ServiceError) -> NoReturn:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            raise HTTPException(status_code=status_code, detail=str(exc)) from exc
    if isinstance(exc, InternalError):
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="internal error") from exc
    raise exc
