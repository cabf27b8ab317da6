"""Tests for AIS message builders."""

import logging
from unittest.mock import patch

import pytest
from conftest import NOW, make_vessel

from ais_relay.ais.encoding import SIXBIT_TABLE, payload_to_bits
from ais_relay.ais.fields import AnglePolicy
from ais_relay.ais.messages import (
    BuildResult,
    EncoderOptions,
    build_extended_class_b_report,
    build_messages,
    build_position_report,
    build_static_class_b,
    build_static_voyage,
)
from ais_relay.ais.models import Measurement
from ais_relay.ais.nmea import frame_message


def _bits(result: BuildResult) -> str:
    assert result.ok, result.error
    return payload_to_bits(result.payload)[: result.bit_length]


def _uint(bits: str, start: int, end: int) -> int:
    return int(bits[start:end], 2)


def _text(bits: str, start: int, end: int) -> str:
    return "".join(SIXBIT_TABLE[int(bits[i:i + 6], 2)] for i in range(start, end, 6))


class TestPositionReport:
    """Tests for type 1 position reports."""

    def test_moored_vessel_layout(self) -> None:
        bits = _bits(build_position_report(make_vessel(), now=NOW))

        assert len(bits) == 168
        assert _uint(bits, 0, 6) == 1
        assert _uint(bits, 8, 38) == 123456789
        assert _uint(bits, 38, 42) == 5  # moored
        assert _uint(bits, 42, 50) == 128  # ROT not available (-128)
        assert _uint(bits, 50, 60) == 0
        assert _uint(bits, 61, 89) == 2310078
        assert _uint(bits, 89, 116) == 31042704
        assert _uint(bits, 116, 128) == 3600
        assert _uint(bits, 128, 137) == 511
        assert _uint(bits, 137, 143) == 25

    def test_output_is_deterministic(self) -> None:
        first = build_position_report(make_vessel(), now=NOW)
        second = build_position_report(make_vessel(), now=NOW)

        assert first.payload == second.payload
        assert len(first.payload) == 28
        assert frame_message(first, 3) == frame_message(second, 3)

    def test_negative_coordinates_use_twos_complement(self) -> None:
        bits = _bits(
            build_position_report(make_vessel(latitude=-33.5, longitude=-70.25), now=NOW)
        )
        assert _uint(bits, 61, 89) == (1 << 28) - 70.25 * 600000
        assert _uint(bits, 89, 116) == (1 << 27) - 33.5 * 600000

    def test_missing_position_fails(self) -> None:
        result = build_position_report(make_vessel(latitude=None), now=NOW)
        assert not result.ok
        assert result.error == "missing position"

    def test_malformed_mmsi_fails_without_raising(self) -> None:
        result = build_position_report(make_vessel(mmsi="ABC"), now=NOW)
        assert not result.ok


class TestExtendedClassB:
    """Tests for type 19 reports."""

    @pytest.mark.parametrize(
        "overrides",
        [
            {},
            {"name": "X" * 40, "length": 2000, "beam": 300, "ais_ship_type": 37},
            {"sog": None, "state": None, "name": ""},
            {"latitude": 95.0, "longitude": 500.0},
        ],
    )
    def test_always_312_bits(self, overrides: dict) -> None:
        result = build_extended_class_b_report(make_vessel(**overrides), now=NOW)
        assert result.bit_length == 312
        assert len(result.payload) == 52

    def test_layout(self) -> None:
        record = make_vessel(sog=5.0, cog=1.0, heading=1.0, ais_ship_type=37)
        bits = _bits(build_extended_class_b_report(record, now=NOW))

        assert _uint(bits, 0, 6) == 19
        assert _uint(bits, 8, 38) == 123456789
        assert _uint(bits, 46, 56) == 97
        assert _text(bits, 143, 263) == "NORDIC STAR" + " " * 9
        assert _uint(bits, 263, 271) == 37
        assert _uint(bits, 301, 305) == 1  # GPS

    def test_length_mismatch_is_rejected(self, caplog: pytest.LogCaptureFixture) -> None:
        with patch("ais_relay.ais.messages.EXTENDED_CLASS_B_BITS", 300):
            with caplog.at_level(logging.WARNING):
                result = build_extended_class_b_report(make_vessel(), now=NOW)

        assert not result.ok
        assert result.payload is None
        assert "312" in caplog.text


class TestStaticVoyage:
    """Tests for type 5 static and voyage data."""

    def test_length_and_fill(self) -> None:
        result = build_static_voyage(make_vessel(), now=NOW)
        assert result.bit_length == 424
        assert len(result.payload) == 71
        sentences = frame_message(result, 1)
        assert sentences[1].split("*")[0].endswith(",0")

    def test_layout(self) -> None:
        record = make_vessel(
            callsign="PD12", length=30, beam=8, draft=2.4, ais_ship_type=70
        )
        record.imo = "IMO 9074729"
        record.navigation.destination = Measurement("ROTTERDAM")
        record.navigation.eta = Measurement("07-04T08:30Z")
        bits = _bits(build_static_voyage(record, now=NOW))

        assert _uint(bits, 0, 6) == 5
        assert _uint(bits, 40, 70) == 9074729
        assert _text(bits, 70, 112) == "PD12@@@"
        assert _text(bits, 112, 232).rstrip() == "NORDIC STAR"
        assert _uint(bits, 232, 240) == 70
        assert _uint(bits, 240, 249) == 0  # to bow
        assert _uint(bits, 249, 258) == 30  # to stern
        assert _uint(bits, 270, 274) == 1
        assert (
            _uint(bits, 274, 278),
            _uint(bits, 278, 283),
            _uint(bits, 283, 288),
            _uint(bits, 288, 294),
        ) == (7, 4, 8, 30)
        assert _uint(bits, 294, 302) == 24
        assert _text(bits, 302, 422).rstrip() == "ROTTERDAM"

    def test_missing_eta_is_not_available(self) -> None:
        bits = _bits(build_static_voyage(make_vessel(), now=NOW))
        assert (
            _uint(bits, 274, 278),
            _uint(bits, 278, 283),
            _uint(bits, 283, 288),
            _uint(bits, 288, 294),
        ) == (0, 0, 24, 60)

    def test_static_data_without_position(self) -> None:
        assert build_static_voyage(make_vessel(latitude=None), now=NOW).ok


class TestStaticClassB:
    """Tests for type 24 parts A and B."""

    def test_long_name_is_truncated(self) -> None:
        part_a, _ = build_static_class_b(make_vessel(name="A very long vessel name indeed"))
        bits = _bits(part_a)
        assert len(bits) == 168
        assert _uint(bits, 38, 40) == 0
        assert _text(bits, 40, 160) == "A VERY LONG VESSEL N"

    def test_short_name_is_space_padded(self) -> None:
        part_a, _ = build_static_class_b(make_vessel(name="Sea"))
        bits = _bits(part_a)
        assert _text(bits, 40, 160) == "SEA" + " " * 17
        assert bits[160:] == "0" * 8

    def test_display_name_is_encoded(self) -> None:
        record = make_vessel(name="SEA")
        record.display_name = "SEA MIN5"
        part_a, _ = build_static_class_b(record)
        assert _text(_bits(part_a), 40, 160).rstrip() == "SEA MIN5"

    def test_part_b(self) -> None:
        _, part_b = build_static_class_b(make_vessel(callsign="PD12", ais_ship_type=37))
        bits = _bits(part_b)
        assert len(bits) == 168
        assert _uint(bits, 38, 40) == 1
        assert _uint(bits, 40, 48) == 37
        assert _text(bits, 90, 132) == "PD12@@@"


class TestBuildMessages:
    """Tests for class selection."""

    def test_class_a_by_default(self) -> None:
        results = build_messages(make_vessel(), now=NOW)
        assert [r.message_type for r in results] == ["1", "5"]

    def test_class_b(self) -> None:
        results = build_messages(make_vessel(ais_class="B"), now=NOW)
        assert [r.message_type for r in results] == ["19", "24A", "24B"]
        assert all(r.ok for r in results)

    def test_angle_policies_per_family(self) -> None:
        record = make_vessel(sog=5.0)
        record.navigation.course_over_ground = Measurement(3.0)
        options = EncoderOptions(
            class_a_angle_policy=AnglePolicy.DEGREES,
            class_b_angle_policy=AnglePolicy.MAGNITUDE,
        )

        type_1 = _bits(build_position_report(record, options, NOW))
        type_19 = _bits(build_extended_class_b_report(record, options, NOW))

        assert _uint(type_1, 116, 128) == 30
        assert _uint(type_19, 112, 124) == 1719
