"""
Identity / session collaborator.

The ledger never reads ambient session state. A caller resolves the
inbound credentials to a RequestContext once, then threads it through
every LedgerService call. A missing context means "no session".

Password handling, email verification and resets belong to the
identity provider and are not implemented here; InMemorySessionProvider
only issues and resolves opaque tokens for an already-identified user.
"""

import secrets
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from moneyar.config import get_settings
from moneyar.models.ledger import utcnow


class Session(BaseModel):
    """An authenticated session for one user."""

    token: str
    user_id: str = Field(..., min_length=1)
    created_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) >= self.expires_at


class RequestContext(BaseModel):
    """Request-scoped identity passed explicitly into the ledger."""

    user_id: str = Field(..., min_length=1)
    correlation_id: UUID = Field(default_factory=uuid4)


class SessionProviderInterface(ABC):
    """Anything that can turn request credentials into a session."""

    @abstractmethod
    async def get_session(self, token: Optional[str]) -> Optional[Session]:
        """
        Resolve a token.

        Returns:
            The session if the token is known and not expired, None otherwise
        """
        pass

    async def context_for(self, token: Optional[str]) -> Optional[RequestContext]:
        """Resolve a token straight into a RequestContext (None if no session)."""
        session = await self.get_session(token)
        if session is None:
            return None
        return RequestContext(user_id=session.user_id)


class InMemorySessionProvider(SessionProviderInterface):
    """
    Process-local session store.

    Good for a single Streamlit process and for tests; sessions are lost
    on restart.
    """

    def __init__(self, ttl: Optional[timedelta] = None):
        if ttl is None:
            ttl = timedelta(minutes=get_settings().session.ttl_minutes)
        self._ttl = ttl
        self._sessions: dict[str, Session] = {}

    def issue(self, user_id: str, now: Optional[datetime] = None) -> Session:
        """Create a new session for an identified user."""
        now = now or utcnow()
        session = Session(
            token=secrets.token_urlsafe(32),
            user_id=user_id,
            created_at=now,
            expires_at=now + self._ttl,
        )
        self._sessions[session.token] = session
        return session

    def revoke(self, token: str) -> bool:
        return self._sessions.pop(token, None) is not None

    async def get_session(
        self,
        token: Optional[str],
        now: Optional[datetime] = None,
    ) -> Optional[Session]:
        if not token:
            return None
        session = self._sessions.get(token)
        if session is None:
            return None
        if session.is_expired(now):
            del self._sessions[token]
            return None
        return session
