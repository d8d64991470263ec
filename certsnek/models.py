"""
Immutable snapshots of the CA-side resources involved in an issuance.

A snapshot is never updated in place; the gateway returns a new one on every
refresh.
"""

import enum
from dataclasses import dataclass, field
from typing import Any, Optional, Tuple


class Status(enum.Enum):
    """Status values reported by the CA for orders, authorizations and challenges."""

    PENDING = "pending"
    READY = "ready"
    PROCESSING = "processing"
    VALID = "valid"
    INVALID = "invalid"
    DEACTIVATED = "deactivated"
    EXPIRED = "expired"
    REVOKED = "revoked"

    @property
    def failed(self) -> bool:
        return self in _FAILED

    @classmethod
    def parse(cls, value: Any) -> "Status":
        """Convert a status string or an ``acme.messages.Status`` into a Status."""
        name = getattr(value, "name", value)
        return cls(str(name))


_FAILED = frozenset({Status.INVALID, Status.DEACTIVATED, Status.EXPIRED, Status.REVOKED})


@dataclass(frozen=True)
class Challenge:
    """A single challenge offered by an authorization."""

    url: str
    typ: str
    status: Status
    token: Optional[str] = None
    # Key authorization string the responder must serve.
    authorization: Optional[str] = None
    error: Optional[str] = None
    body: Any = field(default=None, repr=False, compare=False)


@dataclass(frozen=True)
class Authorization:
    """Proof-of-control requirement for one identifier."""

    url: str
    identifier: str
    status: Status
    challenges: Tuple[Challenge, ...] = ()

    def find_challenge(self, typ: str) -> Optional[Challenge]:
        for challenge in self.challenges:
            if challenge.typ == typ:
                return challenge
        return None


@dataclass(frozen=True)
class Order:
    """A certificate order for one or more DNS identifiers."""

    url: str
    status: Status
    identifiers: Tuple[str, ...] = ()
    authorizations: Tuple[str, ...] = ()
    finalize: Optional[str] = None
    certificate: Optional[str] = None
    error: Optional[str] = None
    body: Any = field(default=None, repr=False, compare=False)


@dataclass(frozen=True)
class ChallengeData:
    """The exact values an HTTP-01 responder serves."""

    token: str
    authorization: str

    @property
    def path(self) -> str:
        return f"/.well-known/acme-challenge/{self.token}"


@dataclass(frozen=True)
class Session:
    """A CA endpoint selection. Carries no issuance state."""

    directory_url: str
    staging: bool = False


@dataclass(frozen=True)
class Account:
    """A CA account bound to the user key pair."""

    uri: str
    contact: Tuple[str, ...] = ()
    body: Any = field(default=None, repr=False, compare=False)
