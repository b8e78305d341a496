"""Session providers supplying bearer credentials for uploads."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from itemize_sync.exceptions import NotAuthenticatedError

logger = logging.getLogger(__name__)


@dataclass
class Session:
    """An authenticated session."""

    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None


class SessionProvider(Protocol):
    """Authentication collaborator used before every upload."""

    async def refresh_session(self) -> Session | None:
        """Try to obtain a fresh session; may return None or raise."""
        ...

    async def get_session(self) -> Session | None:
        """Return the cached session without network access."""
        ...


class StaticSessionProvider:
    """Provider backed by tokens from configuration.

    There is no refresh endpoint behind it, so refreshing just hands back
    the configured session.
    """

    def __init__(self, access_token: str | None, refresh_token: str | None = None) -> None:
        self._session = Session(access_token, refresh_token) if access_token else None

    async def refresh_session(self) -> Session | None:
        return self._session

    async def get_session(self) -> Session | None:
        return self._session


async def get_access_token(provider: SessionProvider) -> str:
    """Refresh the session, falling back to the cached one.

    Raises:
        NotAuthenticatedError: If neither yields an access token, or the
            cached session cannot be read
    """
    session: Session | None = None
    try:
        session = await provider.refresh_session()
    except Exception as e:
        logger.warning("Session refresh failed, using cached session: %s", e)

    if session is None or not session.access_token:
        try:
            session = await provider.get_session()
        except Exception as e:
            logger.warning("Cached session unavailable: %s", e)
            raise NotAuthenticatedError() from e

    if session is None or not session.access_token:
        raise NotAuthenticatedError()
    return session.access_token
