from enum import Enum

from fastapi import Depends, HTTPException, Request

from stagegate.deps.auth import Actor, require_auth


class Role(Enum):
    ADMIN = "ADMIN"
    MEMBER = "MEMBER"


_RANK = {
    Role.MEMBER: 1,
    Role.ADMIN: 2,
}


def parse_role(value: str | None) -> Role:
    return Role(str(value or Role.MEMBER.value).upper())


def require_role(role: Role):
    def dependency(request: Request, actor: Actor = Depends(require_auth)) -> Actor:
        try:
            user_role = parse_role(actor.role)
        except ValueError as exc:
            raise HTTPException(status_code=403, detail="Invalid role claim") from exc

        if _RANK[user_role] < _RANK[role]:
            raise HTTPException(status_code=403, detail="Insufficient role")

        request.state.role = user_role.value
        return actor

    return dependency
