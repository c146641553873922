"""Test Bluetooth SIG weight profile frames."""

from datetime import date, datetime

import pytest

from bodyscale_ble.exceptions import InvalidFrameError
from bodyscale_ble.protocol.weight_profile import (
    BodyCompositionFlag,
    UserControlPointOpcode,
    UserControlPointResult,
    WeightFlag,
    build_change_increment,
    build_consent_command,
    build_date_of_birth,
    build_height,
    build_register_new_user_command,
    decode_body_composition_measurement,
    decode_weight_measurement,
    encode_body_composition_measurement,
    encode_weight_measurement,
    parse_user_control_point_response,
)


class TestWeightMeasurement:
    """Test Weight Measurement (0x2A9D) frames."""

    def test_si_weight(self):
        """Flags 0x00 and raw weight 7000 decode to 35.0 kg."""
        frame = decode_weight_measurement(bytes([0x00]) + (7000).to_bytes(2, "little"))
        assert frame.weight_kg == pytest.approx(35.0)
        assert frame.timestamp is None
        assert frame.user_index is None

    def test_imperial_weight_converted(self):
        frame = decode_weight_measurement(bytes([WeightFlag.IMPERIAL]) + (16000).to_bytes(2, "little"))
        assert frame.weight == pytest.approx(160.0)
        assert frame.weight_kg == pytest.approx(72.5748, abs=1e-4)

    def test_all_optional_fields(self):
        data = bytes([0x0E, 0x98, 0x3A, 0xE8, 0x07, 3, 14, 8, 15, 0, 0x02, 0xF5, 0x00, 0x08, 0x07])
        frame = decode_weight_measurement(data)
        assert frame.weight_kg == pytest.approx(75.0)
        assert frame.timestamp == datetime(2024, 3, 14, 8, 15, 0)
        assert frame.user_index == 2
        assert frame.bmi == pytest.approx(24.5)
        assert frame.height == pytest.approx(1.8)
        assert encode_weight_measurement(frame) == data

    def test_missing_flagged_field(self):
        with pytest.raises(InvalidFrameError):
            decode_weight_measurement(bytes([WeightFlag.USER_ID, 0x70, 0x3A]))


class TestBodyComposition:
    """Test Body Composition Measurement (0x2A9C) frames."""

    def test_fields_in_wire_order(self):
        flags = (
            BodyCompositionFlag.USER_ID
            | BodyCompositionFlag.MUSCLE_PERCENTAGE
            | BodyCompositionFlag.BODY_WATER_MASS
            | BodyCompositionFlag.IMPEDANCE
            | BodyCompositionFlag.WEIGHT
        )
        data = (
            int(flags).to_bytes(2, "little")
            + (215).to_bytes(2, "little")
            + bytes([3])
            + (402).to_bytes(2, "little")
            + (8000).to_bytes(2, "little")
            + (5000).to_bytes(2, "little")
            + (15000).to_bytes(2, "little")
        )
        frame = decode_body_composition_measurement(data)
        assert frame.fat_percentage == pytest.approx(21.5)
        assert frame.user_index == 3
        assert frame.muscle_percentage == pytest.approx(40.2)
        assert frame.body_water_mass == pytest.approx(40.0)
        assert frame.impedance == pytest.approx(500.0)
        assert frame.weight == pytest.approx(75.0)
        assert frame.bmr_kcal is None
        assert encode_body_composition_measurement(frame) == data

    def test_bmr_in_kcal(self):
        data = int(BodyCompositionFlag.BMR).to_bytes(2, "little") + bytes(2) + (7118).to_bytes(2, "little")
        assert decode_body_composition_measurement(data).bmr_kcal == 1700


class TestUserControlPoint:
    """Test User Data Service control point frames."""

    def test_register_response(self):
        response = parse_user_control_point_response(bytes([0x20, 0x01, 0x01, 0x04]))
        assert response.request_opcode == UserControlPointOpcode.REGISTER_NEW_USER
        assert response.success
        assert response.user_index == 4

    def test_not_authorized(self):
        response = parse_user_control_point_response(bytes([0x20, 0x02, 0x05]))
        assert response.result == UserControlPointResult.USER_NOT_AUTHORIZED
        assert not response.success
        assert response.user_index is None

    def test_non_response_frames(self):
        assert parse_user_control_point_response(bytes([0x01, 0x02, 0x03])) is None
        assert parse_user_control_point_response(bytes([0x20, 0x01])) is None

    def test_commands(self):
        assert build_register_new_user_command(1234) == bytes([0x01, 0xD2, 0x04])
        assert build_consent_command(3, 1234) == bytes([0x02, 0x03, 0xD2, 0x04])
        assert build_date_of_birth(date(1990, 5, 17)) == bytes([0xC6, 0x07, 5, 17])
        assert build_height(180.6) == bytes([180, 0])
        assert build_change_increment() == bytes([1, 0, 0, 0])
