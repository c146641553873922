"""Session configuration."""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from typing import Any

DEFAULT_IDLE_TIMEOUT = 60.0


@dataclass
class SessionConfig:
    """Tunables for one driver session.

    Attributes:
        idle_timeout: Seconds without notifications before the session is
            force-disconnected (also armed when the step sequence ends)
        connect_timeout: Scan/connect timeout in seconds per attempt
        max_attempts: Connection attempts for bleak-retry-connector
        use_services_cache: Enable GATT service caching for faster reconnections
        unique_base: Fixed per-installation number mixed into vendor user ids;
            None means read or create it from the user profile store
    """
    idle_timeout: float = DEFAULT_IDLE_TIMEOUT
    connect_timeout: float = 10.0
    max_attempts: int = 4
    use_services_cache: bool = True
    unique_base: int | None = None

    def __post_init__(self) -> None:
        if self.idle_timeout <= 0:
            raise ValueError(f"idle_timeout must be positive, got {self.idle_timeout}")
        if self.connect_timeout <= 0:
            raise ValueError(f"connect_timeout must be positive, got {self.connect_timeout}")
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SessionConfig:
        """Build a config from a plain dict (e.g. loaded from JSON).

        Raises:
            ValueError: On unknown keys or values of the wrong type
        """
        known = {item.name for item in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown session config keys: {', '.join(sorted(unknown))}")

        kwargs: dict[str, Any] = {}
        for key, value in data.items():
            if key in ("idle_timeout", "connect_timeout"):
                kwargs[key] = _parse_float(key, value)
            elif key == "max_attempts":
                kwargs[key] = _parse_int(key, value)
            elif key == "use_services_cache":
                if not isinstance(value, bool):
                    raise ValueError(f"{key} must be a boolean, got {value!r}")
                kwargs[key] = value
            elif key == "unique_base":
                kwargs[key] = None if value is None else _parse_int(key, value)
        return cls(**kwargs)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _parse_int(key: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError(f"{key} must be an integer, got {value!r}")
    if isinstance(value, int):
        return value
    try:
        text = str(value).strip()
        return int(text, 16) if text.lower().startswith("0x") else int(text)
    except ValueError as e:
        raise ValueError(f"{key} must be an integer, got {value!r}") from e


def _parse_float(key: str, value: Any) -> float:
    if isinstance(value, bool):
        raise ValueError(f"{key} must be a number, got {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"{key} must be a number, got {value!r}") from e
