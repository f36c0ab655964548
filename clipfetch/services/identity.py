"""Round-robin rotation over the secondary provider's client identities."""
import threading
from dataclasses import dataclass
from typing import Sequence

from clipfetch.core.config import settings


@dataclass(frozen=True)
class ClientIdentity:
    """One pre-configured way of presenting ourselves to the secondary provider."""

    client: str
    proxies: dict[str, str] | None = None

    def __str__(self) -> str:
        return self.client


class IdentityRotator:
    """Hand out identities from a fixed pool in strict rotation.

    The cursor is shared by every caller of the same instance; the i-th
    call over the rotator's lifetime returns ``pool[i % len(pool)]``.
    """

    def __init__(self, pool: Sequence[ClientIdentity]) -> None:
        if not pool:
            raise ValueError("Identity pool must not be empty")
        self._pool = tuple(pool)
        self._cursor = 0
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls) -> "IdentityRotator":
        """Build the pool from ``PYTUBE_CLIENTS`` / ``PYTUBE_PROXY``."""
        proxies = None
        if settings.PYTUBE_PROXY:
            proxies = {"http": settings.PYTUBE_PROXY, "https": settings.PYTUBE_PROXY}
        clients = settings.pytube_clients_list or ["WEB"]
        return cls([ClientIdentity(client=name, proxies=proxies) for name in clients])

    @property
    def pool(self) -> tuple[ClientIdentity, ...]:
        return self._pool

    def next(self) -> ClientIdentity:
        """Return the identity at the cursor and advance it."""
        with self._lock:
            identity = self._pool[self._cursor]
            self._cursor = (self._cursor + 1) % len(self._pool)
        return identity


# Process-wide rotator shared by every pipeline instance.
identity_rotator = IdentityRotator.from_settings()
