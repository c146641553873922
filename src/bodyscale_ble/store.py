"""User profiles and the small key-value map drivers persist credentials in.

Scales that keep their own user table hand out a "scale index" and expect a
"consent code" on every connection. Both are stored per local user id so the
next session can skip registration:

    userConsentCode{user_id}          -> consent code
    userScaleIndex{user_id}           -> scale index
    userIdFromUserScaleIndex{index}   -> user_id
    uniqueNumber                      -> per-installation random base

-1 marks an unset value, matching what is kept on disk.
"""

from __future__ import annotations

import json
import logging
import random
from collections.abc import Iterable
from pathlib import Path

from .exceptions import UserProfileError
from .models.user import ScaleUser

_LOGGER = logging.getLogger(__name__)

UNSET = -1
UNIQUE_NUMBER_KEY = "uniqueNumber"
DEFAULT_UNIQUE_BASE = 99


def consent_code_key(user_id: int) -> str:
    return f"userConsentCode{user_id}"


def scale_index_key(user_id: int) -> str:
    return f"userScaleIndex{user_id}"


def user_id_from_scale_index_key(scale_index: int) -> str:
    return f"userIdFromUserScaleIndex{scale_index}"


class UserProfileStore:
    """In-memory user list plus persisted integer values.

    Subclasses override _save() to persist; this class keeps everything in
    memory, which is what tests and one-shot scripts need.
    """

    def __init__(
            self,
            users: Iterable[ScaleUser] = (),
            selected_user_id: int | None = None,
            values: dict[str, int] | None = None,
    ):
        self._users: dict[int, ScaleUser] = {user.id: user for user in users}
        self._values: dict[str, int] = dict(values or {})
        if selected_user_id is None and self._users:
            selected_user_id = next(iter(self._users))
        self._selected_user_id = selected_user_id

    @property
    def users(self) -> list[ScaleUser]:
        return list(self._users.values())

    @property
    def selected_user(self) -> ScaleUser | None:
        if self._selected_user_id is None:
            return None
        return self._users.get(self._selected_user_id)

    def add_user(self, user: ScaleUser, select: bool = False) -> None:
        self._users[user.id] = user
        if select or self._selected_user_id is None:
            self._selected_user_id = user.id
        self._save()

    def select_user(self, user_id: int) -> ScaleUser:
        """Make user_id the selected user.

        Raises:
            KeyError: If no such user exists
        """
        user = self._users[user_id]
        self._selected_user_id = user_id
        self._save()
        return user

    def get_user(self, user_id: int) -> ScaleUser | None:
        return self._users.get(user_id)

    def get_int(self, key: str, default: int = UNSET) -> int:
        return self._values.get(key, default)

    def put_int(self, key: str, value: int) -> None:
        self._values[key] = value
        self._save()

    def get_consent_code(self, user_id: int) -> int:
        return self.get_int(consent_code_key(user_id))

    def store_consent_code(self, user_id: int, consent_code: int) -> None:
        self.put_int(consent_code_key(user_id), consent_code)

    def get_scale_index(self, user_id: int) -> int:
        return self.get_int(scale_index_key(user_id))

    def store_scale_index(self, user_id: int, scale_index: int) -> None:
        """Store the scale index of a user and the reverse mapping.

        The mapping of a previously stored index is cleared first.
        """
        current = self.get_scale_index(user_id)
        if current != UNSET:
            self._values[user_id_from_scale_index_key(current)] = UNSET
        self._values[scale_index_key(user_id)] = scale_index
        if scale_index != UNSET:
            self._values[user_id_from_scale_index_key(scale_index)] = user_id
        self._save()

    def get_user_id_from_scale_index(self, scale_index: int) -> int:
        return self.get_int(user_id_from_scale_index_key(scale_index))

    def get_unique_base(self) -> int:
        """Per-installation random number, created on first use.

        Leaves room for 100 user ids below the 16-bit limit.
        """
        value = self.get_int(UNIQUE_NUMBER_KEY)
        if value == UNSET:
            value = random.randint(0, 0xFFFF - 100)
            _LOGGER.debug("Created unique number %d", value)
            self.put_int(UNIQUE_NUMBER_KEY, value)
        return value

    def _save(self) -> None:
        """Persist the current state (no-op in memory)."""


class JsonUserProfileStore(UserProfileStore):
    """UserProfileStore backed by a JSON file.

    File layout:
        {"selected_user_id": 1, "users": [...], "values": {"userScaleIndex1": 3}}
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._loading = True
        users, selected, values = self._load()
        super().__init__(users, selected, values)
        self._loading = False

    def _load(self) -> tuple[list[ScaleUser], int | None, dict[str, int]]:
        if not self.path.exists():
            return [], None, {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            users = [ScaleUser.from_dict(item) for item in data.get("users", [])]
            values = {str(key): int(value) for key, value in data.get("values", {}).items()}
            selected = data.get("selected_user_id")
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            raise UserProfileError(f"Cannot load user profiles from {self.path}: {e}") from e
        return users, selected, values

    def _save(self) -> None:
        if self._loading:
            return
        data = {
            "selected_user_id": self._selected_user_id,
            "users": [user.to_dict() for user in self._users.values()],
            "values": self._values,
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data, indent=2, sort_keys=True), encoding="utf-8")
