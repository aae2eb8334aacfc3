from dataclasses import dataclass
from typing import Optional

from fastapi import HTTPException, Request

from stagegate.services.auth_service import verify_token


@dataclass(frozen=True)
class Actor:
    user_id: str
    organization_id: int
    role: str
    name: Optional[str] = None


def _parse_bearer_token(request: Request) -> str:
    auth_header = request.headers.get("Authorization")
    if not auth_header:
        raise HTTPException(status_code=401, detail="Missing Authorization header")

    parts = auth_header.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1].strip():
        raise HTTPException(status_code=401, detail="Invalid Authorization header")

    return parts[1].strip()


def require_auth(request: Request) -> Actor:
    token = _parse_bearer_token(request)

    try:
        claims = verify_token(token)
    except ValueError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc

    user_id = str(claims.get("sub"))
    token_organization_id = int(claims.get("organization_id"))

    header_organization_id = request.headers.get("X-Organization-Id")
    if header_organization_id is None:
        raise HTTPException(status_code=403, detail="Missing X-Organization-Id header")

    try:
        header_organization_id_int = int(header_organization_id)
    except ValueError as exc:
        raise HTTPException(status_code=403, detail="Invalid X-Organization-Id header") from exc

    if header_organization_id_int != token_organization_id:
        raise HTTPException(status_code=403, detail="Organization mismatch")

    actor = Actor(
        user_id=user_id,
        organization_id=token_organization_id,
        role=str(claims.get("role") or "MEMBER").upper(),
        name=claims.get("name"),
    )

    request.state.user_id = actor.user_id
    request.state.organization_id = actor.organization_id
    request.state.actor = actor

    return actor
