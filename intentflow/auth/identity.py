"""Caller identity."""
from dataclasses import dataclass
from ..config import Settings


@dataclass(frozen=True)
class Identity:
    """The acting user. System callers see every tenant's events."""

    user_id: str
    is_system: bool = False

    def can_see(self, owner_id: str | None) -> bool:
        return self.is_system or owner_id == self.user_id


def identity_for(user_id: str, settings: Settings) -> Identity:
    return Identity(user_id=user_id, is_system=user_id in settings.system_user_ids)
