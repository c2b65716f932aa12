"""Domain entities for reusable notification templates and their triggers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class NotificationTemplate:
    """Title/body pair with ``{{ placeholder }}`` markers."""

    id: int | None
    name: str
    title: str
    body: str
    level: str = "info"
    channels: list[str] = field(default_factory=lambda: ["in_app"])
    is_active: bool = True


@dataclass
class NotificationTrigger:
    """Binds a domain event name to a template and an audience."""

    id: int | None
    name: str
    event: str
    template_id: int
    conditions: dict[str, Any] = field(default_factory=dict)
    recipient_ids: list[int] = field(default_factory=list)
    recipient_roles: list[str] = field(default_factory=list)
    channels: list[str] = field(default_factory=list)
    is_active: bool = True

    def applies_to(self, data: dict[str, Any]) -> bool:
        """Return ``True`` when every condition matches ``data``."""

        for key, expected in (self.conditions or {}).items():
            actual = data.get(key)
            if isinstance(expected, list):
                if actual not in expected:
                    return False
            elif actual != expected:
                return False
        return True


__all__ = ["NotificationTemplate", "NotificationTrigger"]
