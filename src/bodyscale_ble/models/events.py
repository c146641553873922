"""Status events reported by a driver session."""

from __future__ import annotations

from dataclasses import dataclass

from .enums import BluetoothStatus, ScaleMessage, UserInteractionType, format_scale_message


@dataclass(frozen=True)
class StatusEvent:
    """One status change or user-facing message.

    Attributes:
        status: Session status
        message: Scale message for SCALE_MESSAGE events
        value: Extra data (battery level, weight, user choices, error text)
        interaction: Requested input for USER_INTERACTION_REQUIRED events
    """
    status: BluetoothStatus
    message: ScaleMessage | None = None
    value: object = None
    interaction: UserInteractionType | None = None

    @property
    def text(self) -> str:
        if self.message is not None:
            return format_scale_message(self.message, self.value)
        if self.value:
            return f"{self.status.name}: {self.value}"
        return self.status.name
