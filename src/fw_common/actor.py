"""The authenticated caller of an operation."""

from dataclasses import dataclass

from src.fw_common.enums import Role


@dataclass(frozen=True)
class Actor:
    user_id: str
    role: Role

    @property
    def is_privileged(self) -> bool:
        """Admins and the internal system actor bypass role restrictions."""
        return self.role in (Role.ADMIN, Role.SYSTEM)


SYSTEM_ACTOR = Actor(user_id="system", role=Role.SYSTEM)
