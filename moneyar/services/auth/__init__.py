"""Identity and session services."""

from moneyar.services.auth.session import (
    InMemorySessionProvider,
    RequestContext,
    Session,
    SessionProviderInterface,
)

__all__ = [
    "InMemorySessionProvider",
    "RequestContext",
    "Session",
    "SessionProviderInterface",
]
