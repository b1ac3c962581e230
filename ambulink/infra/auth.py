from __future__ import annotations

import os
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt

from ambulink.domain.access import Principal
from ambulink.domain.permissions import OrganizationType, UserRole

JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MIN = int(os.getenv("JWT_EXPIRES_MIN", "60"))


def create_access_token(
    *,
    user_id: str,
    role: UserRole,
    organization_id: str,
    organization_type: OrganizationType,
    expires_minutes: int | None = None,
) -> str:
    now = datetime.now(UTC)
    expire_delta = timedelta(minutes=expires_minutes or JWT_EXPIRES_MIN)
    payload: dict[str, Any] = {
        "sub": user_id,
        "role": str(role),
        "org_id": organization_id,
        "org_type": str(organization_type),
        "iat": int(now.timestamp()),
        "exp": int((now + expire_delta).timestamp()),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_access_token(token: str) -> dict[str, Any]:
    decoded = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    if not isinstance(decoded, dict):
        raise ValueError("Invalid token payload")
    return decoded


def principal_from_claims(claims: dict[str, Any]) -> Principal:
    try:
        return Principal(
            id=str(claims["sub"]),
            role=UserRole(claims["role"]),
            organization_id=str(claims["org_id"]),
            organization_type=OrganizationType(claims["org_type"]),
        )
    except (KeyError, ValueError) as exc:
        raise ValueError("Invalid principal claims") from exc
