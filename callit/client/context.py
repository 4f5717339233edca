import logging
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict

from .backend import HttpBackend
from .errors import NotSignedIn
from .notices import Notifier

logger = logging.getLogger(__name__)


class IdentityState(str, Enum):
    LOADING = "loading"
    SIGNED_IN = "signed_in"
    SIGNED_OUT = "signed_out"


class Identity(BaseModel):
    """The current user, as handed out by the identity provider. Read-only."""
    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str
    email: str
    display_name: Optional[str] = None
    is_admin: bool = False
    created_at: datetime
    updated_at: datetime


class ClientContext:
    """
    Process-wide client state: the backend connection, the current identity
    and the notice sink. Created once, initialised explicitly with init(), and
    passed to the store and reconciler rather than imported.
    """

    def __init__(self, backend, notifier: Optional[Notifier] = None):
        self.backend = backend
        self.notifier = notifier or Notifier()
        self.state = IdentityState.LOADING
        self.user: Optional[Identity] = None

    @classmethod
    def connect(cls, base_url: str, notifier: Optional[Notifier] = None) -> "ClientContext":
        return cls(HttpBackend(base_url), notifier=notifier)

    def _set_user(self, row: Optional[dict]) -> None:
        self.user = Identity.model_validate(row) if row else None
        self.state = IdentityState.SIGNED_IN if self.user else IdentityState.SIGNED_OUT
        logger.info(f"Identity is {self.state.value}")

    async def init(self) -> "ClientContext":
        """Resolve the identity; until this returns the context is loading."""
        self._set_user(await self.backend.current_user())
        return self

    async def sign_in(self, email: str, password: str) -> Identity:
        self._set_user(await self.backend.sign_in(email, password))
        return self.user

    async def sign_up(self, email: str, password: str, display_name: Optional[str] = None) -> Identity:
        self._set_user(await self.backend.sign_up(email, password, display_name))
        return self.user

    async def sign_out(self) -> None:
        await self.backend.sign_out()
        self._set_user(None)

    @property
    def loading(self) -> bool:
        return self.state is IdentityState.LOADING

    @property
    def user_id(self) -> Optional[str]:
        return self.user.id if self.user else None

    def require_user(self) -> Identity:
        if self.user is None:
            raise NotSignedIn("You need to sign in first")
        return self.user
