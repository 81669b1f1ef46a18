"""Token handling and caller identity.

Tokens are minted by the identity layer in front of the booking engine. The
engine only verifies them and turns the claims into an ``Actor``.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum

from jose import JWTError, jwt

from app.core.config import settings


class ActorType(str, Enum):
    """Type of caller performing an action."""

    SYSTEM = "system"
    SPECIALIST = "specialist"


@dataclass(frozen=True)
class Actor:
    """Authenticated caller.

    Attributes:
        actor_type: SPECIALIST for a specialist acting on their own agenda,
            SYSTEM for trusted back-office processes (booking bot, dispatcher)
        actor_id: Specialist id for SPECIALIST actors, service name otherwise
    """

    actor_type: ActorType
    actor_id: str | None = None

    @classmethod
    def system(cls, name: str = "system") -> "Actor":
        return cls(actor_type=ActorType.SYSTEM, actor_id=name)

    @classmethod
    def specialist(cls, specialist_id: str) -> "Actor":
        return cls(actor_type=ActorType.SPECIALIST, actor_id=specialist_id)

    @property
    def is_system(self) -> bool:
        return self.actor_type == ActorType.SYSTEM


def create_access_token(
    subject: str,
    token_type: str = "access",
    expires_delta: timedelta | None = None,
    additional_claims: dict | None = None,
) -> str:
    """Create a JWT access token.

    Args:
        subject: The subject of the token (specialist id or service name)
        token_type: Type of token (access, refresh, etc.)
        expires_delta: Optional custom expiration time
        additional_claims: Optional additional claims to include

    Returns:
        Encoded JWT token string
    """
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.access_token_expire_minutes)

    expire = datetime.now(timezone.utc) + expires_delta

    to_encode = {
        "sub": subject,
        "type": token_type,
        "exp": expire,
        "iat": datetime.now(timezone.utc),
    }

    if additional_claims:
        to_encode.update(additional_claims)

    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def decode_access_token(token: str) -> dict | None:
    """Decode and validate a JWT access token.

    Args:
        token: The JWT token string

    Returns:
        Decoded token payload or None if invalid
    """
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
        return payload
    except JWTError:
        return None


def actor_from_claims(payload: dict) -> Actor | None:
    """Build an Actor from decoded token claims, or None if unusable."""
    subject = payload.get("sub")
    if not subject:
        return None

    try:
        actor_type = ActorType(payload.get("actor_type", ""))
    except ValueError:
        return None

    return Actor(actor_type=actor_type, actor_id=subject)
