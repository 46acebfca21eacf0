"""Short-lived cache of published public keys."""

from datetime import datetime, timedelta
from typing import Optional

# Published keys change only when a user re-keys.
DEFAULT_TTL = timedelta(hours=24)


class PublicKeyCache:
    """Base64 public keys by user id, each valid for ``ttl`` after lookup."""

    def __init__(self, ttl: timedelta = DEFAULT_TTL) -> None:
        self._ttl = ttl
        self._keys: dict[str, tuple[str, datetime]] = {}

    def store(self, user_id: str, key: str) -> None:
        self._keys[str(user_id)] = (key, datetime.now() + self._ttl)

    def retrieve(self, user_id: str) -> Optional[str]:
        """Returns the cached key, or None when absent or expired."""
        entry = self._keys.get(str(user_id))
        if entry is None:
            return None
        key, expires_at = entry
        if expires_at <= datetime.now():
            del self._keys[str(user_id)]
            return None
        return key

    def invalidate(self, user_id: str) -> None:
        self._keys.pop(str(user_id), None)
