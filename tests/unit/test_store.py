"""Test user profiles and persisted scale credentials."""

from __future__ import annotations

import json
from datetime import date

import pytest

from bodyscale_ble.exceptions import UserProfileError
from bodyscale_ble.models.enums import Gender, WeightUnit
from bodyscale_ble.models.user import ScaleUser
from bodyscale_ble.store import UNSET, JsonUserProfileStore, UserProfileStore


class TestUserProfileStore:
    """Test the in-memory store."""

    def test_first_user_is_selected(self, user):
        store = UserProfileStore([user, ScaleUser(id=2, name="Sam")])
        assert store.selected_user is user

        store.select_user(2)
        assert store.selected_user.name == "Sam"

    def test_select_unknown_user(self):
        with pytest.raises(KeyError):
            UserProfileStore().select_user(5)

    def test_unset_values(self):
        store = UserProfileStore()
        assert store.selected_user is None
        assert store.get_consent_code(1) == UNSET
        assert store.get_scale_index(1) == UNSET
        assert store.get_user_id_from_scale_index(3) == UNSET

    def test_scale_index_keeps_reverse_mapping(self):
        store = UserProfileStore()
        store.store_scale_index(1, 3)
        assert store.get_user_id_from_scale_index(3) == 1

        store.store_scale_index(1, 4)
        assert store.get_user_id_from_scale_index(3) == UNSET
        assert store.get_user_id_from_scale_index(4) == 1

        store.store_scale_index(1, UNSET)
        assert store.get_user_id_from_scale_index(4) == UNSET
        assert store.get_scale_index(1) == UNSET

    def test_unique_base_is_created_once(self):
        store = UserProfileStore()
        base = store.get_unique_base()
        assert 0 <= base <= 0xFFFF - 100
        assert store.get_unique_base() == base


class TestJsonUserProfileStore:
    """Test the JSON file store."""

    def test_round_trip(self, tmp_path, user):
        path = tmp_path / "profiles" / "users.json"
        store = JsonUserProfileStore(path)
        store.add_user(user)
        store.add_user(ScaleUser(id=2, name="Sam", gender=Gender.FEMALE, scale_unit=WeightUnit.LB))
        store.store_consent_code(user.id, 1234)
        store.store_scale_index(user.id, 3)

        loaded = JsonUserProfileStore(path)
        assert loaded.selected_user == user
        assert loaded.get_user(2).scale_unit is WeightUnit.LB
        assert loaded.get_consent_code(user.id) == 1234
        assert loaded.get_user_id_from_scale_index(3) == user.id

        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["values"]["userScaleIndex1"] == 3
        assert data["users"][0]["birthday"] == "1990-05-17"

    def test_missing_file_is_empty(self, tmp_path):
        store = JsonUserProfileStore(tmp_path / "absent.json")
        assert store.users == []
        assert not (tmp_path / "absent.json").exists()

    @pytest.mark.parametrize(
        "content",
        [
            "not json",
            '{"users": [{"name": "no id"}]}',
            '{"users": [{"id": 1, "gender": "robot"}]}',
            '{"values": {"uniqueNumber": "abc"}}',
        ],
    )
    def test_corrupt_file(self, tmp_path, content):
        path = tmp_path / "users.json"
        path.write_text(content, encoding="utf-8")
        with pytest.raises(UserProfileError):
            JsonUserProfileStore(path)


def test_user_age():
    user = ScaleUser(id=1, birthday=date(1990, 5, 17))
    assert user.age(date(2024, 5, 16)) == 33
    assert user.age(date(2024, 5, 17)) == 34
