"""
Identity Session

The signed-in identity is supplied by an external auth provider. This
module is the seam: it holds the current identity and tells listeners
whenever it changes, so membership can be re-resolved.
"""

from typing import Awaitable, Callable, Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field


logger = structlog.get_logger(__name__)


class Identity(BaseModel):
    """An authenticated user as reported by the auth provider."""
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    id: str = Field(..., min_length=1)
    email: str = ""
    display_name: str = ""


IdentityListener = Callable[[Optional[Identity]], Awaitable[None]]


class IdentitySession:
    """Current identity plus change notification."""

    def __init__(self, identity: Optional[Identity] = None):
        self._identity = identity
        self._listeners: list[IdentityListener] = []

    @property
    def current_identity(self) -> Optional[Identity]:
        return self._identity

    def subscribe(self, listener: IdentityListener) -> Callable[[], None]:
        """Register a listener; returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def sign_in(self, identity: Identity) -> None:
        await self._set(identity)

    async def sign_out(self) -> None:
        await self._set(None)

    async def _set(self, identity: Optional[Identity]) -> None:
        if identity == self._identity:
            return
        self._identity = identity
        logger.info(
            "identity_changed",
            user_id=identity.id if identity else None,
        )
        for listener in list(self._listeners):
            await listener(identity)
