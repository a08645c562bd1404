"""
User-facing notifications.

Every outcome of a store-facing operation is converted into one of these at
the call site, so nothing raised by the store reaches the rendering code.
"""

from enum import Enum

from pydantic import BaseModel, Field


class NotificationLevel(str, Enum):
    SUCCESS = "success"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class Notification(BaseModel):
    """A toast, inline banner or full-screen error state."""

    level: NotificationLevel
    title: str = Field(..., min_length=1, max_length=120)
    message: str = ""

    # Toasts can be dismissed; a persistent error replaces the dashboard
    dismissable: bool = True
    persistent: bool = False

    # Inline per-field messages for validation failures
    field_errors: dict[str, str] = Field(default_factory=dict)

    @property
    def is_error(self) -> bool:
        return self.level == NotificationLevel.ERROR

    @classmethod
    def success(cls, title: str, message: str = "") -> "Notification":
        return cls(level=NotificationLevel.SUCCESS, title=title, message=message)

    @classmethod
    def warning(cls, title: str, message: str = "", **kwargs) -> "Notification":
        return cls(level=NotificationLevel.WARNING, title=title, message=message, **kwargs)

    @classmethod
    def error(cls, title: str, message: str = "", **kwargs) -> "Notification":
        return cls(level=NotificationLevel.ERROR, title=title, message=message, **kwargs)
