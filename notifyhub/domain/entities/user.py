"""Domain entity for a notification recipient."""

from dataclasses import dataclass


@dataclass
class User:
    """Contact details of a marketplace user."""

    id: int | None
    name: str
    email: str | None
    role: str
    phone: str | None = None
    push_token: str | None = None
    is_active: bool = True

    def has_role(self, role: str) -> bool:
        """Return ``True`` when the user's role matches ``role``."""

        return self.role.lower() == role.lower()

    def is_admin(self) -> bool:
        return self.has_role("admin") or self.has_role("super-admin")
