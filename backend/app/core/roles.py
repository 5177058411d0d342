from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional

from fastapi import Depends

from app.core.auth_utils import get_current_user
from app.core.errors import PermissionDeniedError

ROLE_AUTHOR = "author"
ROLE_REVIEWER = "reviewer"
ROLE_EDITOR = "editor"
ROLE_ADMIN = "admin"

KNOWN_ROLES = {ROLE_AUTHOR, ROLE_REVIEWER, ROLE_EDITOR, ROLE_ADMIN}

EDITORIAL_ROLES = (ROLE_EDITOR, ROLE_ADMIN)


@dataclass(frozen=True)
class Actor:
    """
    经过身份协作方认证的调用者。

    中文注释:
    - 引擎信任调用方声明的角色（由 Identity/Auth 协作方签发），只在每个操作边界做授权校验。
    """

    id: str
    roles: frozenset[str] = field(default_factory=frozenset)
    email: Optional[str] = None

    @staticmethod
    def from_user(user: dict) -> "Actor":
        raw_roles = user.get("roles") or []
        roles = {str(r).strip().lower() for r in raw_roles if str(r).strip()}
        return Actor(
            id=str(user.get("id") or ""),
            roles=frozenset(roles & KNOWN_ROLES),
            email=user.get("email"),
        )

    def has_any(self, *roles: str) -> bool:
        return bool(self.roles.intersection(roles))

    @property
    def is_admin(self) -> bool:
        return ROLE_ADMIN in self.roles

    def require_any(self, *roles: str) -> "Actor":
        if not self.has_any(*roles):
            raise PermissionDeniedError(
                f"Operation requires one of roles: {sorted(roles)}",
                extra={"actor_id": self.id},
            )
        return self


async def get_current_actor(current_user: dict = Depends(get_current_user)) -> Actor:
    return Actor.from_user(current_user)


def require_any_role(required: Iterable[str]) -> Callable[..., Actor]:
    required_set = tuple(required)

    async def _dep(actor: Actor = Depends(get_current_actor)) -> Actor:
        return actor.require_any(*required_set)

    return _dep
