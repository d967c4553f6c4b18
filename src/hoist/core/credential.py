"""Short-lived credentials and the sessions caching them while publishing."""
import threading
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable, Optional

from attrs import define, field

if TYPE_CHECKING:
    from hoist.core.registry import Registry


@define(frozen=True, kw_only=True)
class Credential:
    """Authentication material granting push and pull rights to one registry.

    Credentials are only kept in memory and the secret is never shown in
    the representation of the object.

    Arguments:
        registry: name of the registry the credential is scoped to.
        username: the user to authenticate as.
        secret: the password or token.
        expires_at: when the credential stops being valid, if known.
    """

    registry: str
    username: str
    secret: str = field(repr=False)
    expires_at: Optional[datetime] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Checks if the credential expired.

        Arguments:
            now: the current time. Defaults to the current UTC time.
        """
        if self.expires_at is None:
            return False

        now = now or datetime.now(timezone.utc)

        return now >= self.expires_at

    def auth_config(self) -> dict:
        """Returns the credential in the format expected by the container engine."""
        return {"username": self.username, "password": self.secret}


class RegistrySession:
    """Acquires a credential lazily and caches it for a publishing batch.

    Access to the credential is serialised so concurrent users of the same
    session authenticate only once. Closing the session drops the credential.

    Arguments:
        registry: the registry to authenticate against.
        clock: returns the current time, used to detect expired credentials.
    """

    def __init__(self, registry: "Registry", clock: Optional[Callable[[], datetime]] = None):
        self._registry = registry
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = threading.Lock()
        self._credential: Optional[Credential] = None
        self.authentications = 0

    @property
    def registry(self) -> "Registry":
        """The registry this session is bound to."""
        return self._registry

    def credential(self) -> Credential:
        """Returns the cached credential, authenticating if needed."""
        with self._lock:
            if self._credential is None or self._credential.is_expired(self._clock()):
                self._credential = self._authenticate()

            return self._credential

    def refresh(self) -> Credential:
        """Discards the cached credential and authenticates again."""
        with self._lock:
            self._credential = self._authenticate()

            return self._credential

    def close(self):
        """Drops the cached credential."""
        with self._lock:
            self._credential = None

    def _authenticate(self) -> Credential:
        self.authentications += 1

        return self._registry.authenticate()

    def __enter__(self) -> "RegistrySession":
        return self

    def __exit__(self, *exc_info):
        self.close()
