"""Request authentication for the dashboard API."""

from typing import Awaitable, Callable, Optional

import anyio
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .accounts import AccountManager
from .models import User
from .sessions import SessionManager

SESSION_COOKIE_NAME = "feedbackhub_session"


class SessionAuth:
    """Resolve the session cookie (or a bearer token) to an active, approved user."""

    def __init__(self, sessions: SessionManager, accounts: AccountManager) -> None:
        self._sessions = sessions
        self._accounts = accounts
        self._bearer = HTTPBearer(auto_error=False)

    async def _token(self, request: Request) -> Optional[str]:
        token = request.cookies.get(SESSION_COOKIE_NAME)
        if token:
            return token
        credentials: Optional[HTTPAuthorizationCredentials] = await self._bearer(request)  # type: ignore[assignment]
        if credentials is not None and credentials.scheme.lower() == "bearer":
            return credentials.credentials
        return None

    async def __call__(self, request: Request) -> User:
        token = await self._token(request)
        if not token:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")

        user_id = self._sessions.resolve(token)
        if user_id is None:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired session")

        user = await anyio.to_thread.run_sync(self._accounts.get_by_id, user_id)
        if user is None or not user.is_active or not user.is_approved:
            self._sessions.destroy(token)
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired session")

        request.state.session_token = token
        return user


def require_super_user(auth: SessionAuth) -> Callable[..., Awaitable[User]]:
    """Wrap ``auth`` so that only super-users pass."""

    async def dependency(user: User = Depends(auth)) -> User:
        if not user.is_super_user:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Access denied. Super user privileges required.",
            )
        return user

    return dependency


__all__ = ["SESSION_COOKIE_NAME", "SessionAuth", "require_super_user"]
