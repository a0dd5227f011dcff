"""Request context for ownership enforcement."""

from dataclasses import dataclass
from uuid import UUID


@dataclass(frozen=True)
class RequestContext:
    """Authenticated caller identity.

    Used to scope every repository operation to the owning user.
    """

    user_id: UUID
    email: str = ""
