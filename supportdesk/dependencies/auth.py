from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Annotated, Mapping, Protocol

from fastapi import Depends, HTTPException, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from supportdesk.domain.models import User
from supportdesk.domain.store import AggregateStore
from supportdesk.security.roles import Role

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionClaims:
    """Identity asserted by the session verifier for one request."""

    user_id: str
    role: Role
    organization_id: str | None = None


class SessionVerifier(Protocol):
    async def verify(self, token: str) -> SessionClaims | None:
        ...


class StaticTokenVerifier:
    """Maps fixed bearer tokens to user ids, reading role and org from the store."""

    def __init__(self, store: AggregateStore, tokens: Mapping[str, str]) -> None:
        self._store = store
        self._tokens = dict(tokens)

    def add_token(self, token: str, user_id: str) -> None:
        self._tokens[token] = user_id

    async def verify(self, token: str) -> SessionClaims | None:
        user_id = self._tokens.get(token)
        if user_id is None:
            return None
        user = self._store.get_user(user_id)
        if user is None:
            return None
        return SessionClaims(user_id=user.id, role=user.role, organization_id=user.organization_id)


bearer_scheme = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=401, detail=detail, headers={"WWW-Authenticate": "Bearer"})


async def get_current_user(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Security(bearer_scheme)],
) -> User:
    """Resolve the bearer token to an active stored user.

    Claims that disagree with the stored user's role or organization are
    rejected so a stale session cannot act with outdated privileges.
    """

    verifier: SessionVerifier | None = getattr(request.app.state, "session_verifier", None)
    store: AggregateStore | None = getattr(request.app.state, "store", None)
    if verifier is None or store is None:
        raise HTTPException(status_code=503, detail="Authentication is not configured")
    if credentials is None:
        raise _unauthorized("Missing authentication credentials")

    claims = await verifier.verify(credentials.credentials)
    if claims is None:
        raise _unauthorized("Invalid authentication credentials")

    user = store.get_user(claims.user_id)
    if user is None or not user.is_active:
        raise _unauthorized("Invalid authentication credentials")
    if user.role is not claims.role or user.organization_id != claims.organization_id:
        logger.warning("Session claims for user %s no longer match the stored account", user.id)
        raise _unauthorized("Session is out of date")
    return user


CurrentUser = Annotated[User, Depends(get_current_user)]
