from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, Optional


@dataclass(frozen=True)
class Identity:
    """Authenticated user profile, as fetched from the identity provider."""

    id: uuid.UUID
    name: Optional[str] = None
    email: str = ""
    roles: FrozenSet[str] = field(default_factory=frozenset)


@dataclass(frozen=True)
class CacheEntry:
    identity: Identity
    added_at: float  # unix seconds


@dataclass(frozen=True)
class Cookie:
    """A ready-to-set response cookie."""

    name: str
    value: str
    domain: str
    expires: datetime
    path: str = "/"
    httponly: bool = True
    secure: bool = True

    def set_cookie_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for `Response.set_cookie`."""
        return {
            "key": self.name,
            "value": self.value,
            "expires": self.expires.astimezone(timezone.utc),
            "path": self.path,
            "domain": self.domain,
            "secure": self.secure,
            "httponly": self.httponly,
            "samesite": "lax",
        }
