"""Tests for sensor events and the condition compiler."""

from datetime import datetime, timezone

import pytest

from sensor_analytics.exceptions import EvaluationFailure
from sensor_analytics.models.conditions import (
    ComparisonOperator,
    compile_condition,
    try_compile_condition,
)
from sensor_analytics.models.events import SensorEvent


class TestSensorEvent:
    """Payload parsing and explicit field lookup."""

    def test_location_defaults_to_device_id(self) -> None:
        event = SensorEvent.from_payload({"device_id": "d1", "sensor_type": "pir", "value": 1})

        assert event.location == "d1"
        assert event.readings == {"value": 1}

    def test_explicit_location_is_kept(self) -> None:
        event = SensorEvent.from_payload(
            {"device_id": "d1", "sensor_type": "pir", "location": "lab", "value": 1}
        )

        assert event.location == "lab"

    @pytest.mark.parametrize(
        "raw",
        [1700000000, 1700000000000, "2023-11-14T22:13:20Z", "2023-11-14T22:13:20+00:00"],
    )
    def test_timestamp_formats(self, raw) -> None:
        event = SensorEvent.from_payload({"device_id": "d1", "sensor_type": "pir", "timestamp": raw})

        assert event.timestamp == datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)

    def test_missing_device_id_is_rejected(self) -> None:
        with pytest.raises(ValueError):
            SensorEvent.from_payload({"sensor_type": "pir"})

    def test_nested_lookup(self) -> None:
        event = SensorEvent.from_payload(
            {"device_id": "d1", "sensor_type": "mq134", "sensor": {"reading": 750}}
        )

        assert event.lookup("sensor.reading") == 750
        assert event.lookup_number(("sensor", "reading")) == 750.0
        assert event.lookup("sensor.missing") is None
        assert event.lookup("sensor.reading.deeper") is None

    def test_envelope_fields_are_addressable(self) -> None:
        event = SensorEvent.from_payload({"device_id": "d1", "sensor_type": "mq134"})

        assert event.lookup("device_id") == "d1"
        assert event.lookup("sensor_type") == "mq134"

    def test_lookup_number_rejects_non_numbers(self) -> None:
        event = SensorEvent.from_payload(
            {"device_id": "d1", "sensor_type": "x", "flag": True, "text": "600"}
        )

        assert event.lookup_number("flag") is None
        assert event.lookup_number("text") is None

    def test_to_payload_round_trips_envelope(self) -> None:
        event = SensorEvent.from_payload(
            {"device_id": "d1", "sensor_type": "mq134", "gas_concentration": 42}
        )
        payload = event.to_payload()

        assert payload["device_id"] == "d1"
        assert payload["location"] == "d1"
        assert payload["gas_concentration"] == 42
        assert isinstance(payload["timestamp"], str)


class TestCompileCondition:
    """Parsing of ``path operator literal`` expressions."""

    def test_simple_comparison(self) -> None:
        condition = compile_condition("gas_concentration > 500")

        assert condition.path == ("gas_concentration",)
        assert condition.operator is ComparisonOperator.GT
        assert condition.literal == 500.0
        assert condition.field == "gas_concentration"

    def test_nested_path_and_decimal_literal(self) -> None:
        condition = compile_condition("sensor.reading <= 12.5")

        assert condition.path == ("sensor", "reading")
        assert condition.operator is ComparisonOperator.LE
        assert condition.literal == 12.5

    def test_negative_literal(self) -> None:
        assert compile_condition("temperature < -5").literal == -5.0

    @pytest.mark.parametrize(
        "expression,operator",
        [("value === 1", ComparisonOperator.EQ), ("value !== 0", ComparisonOperator.NE)],
    )
    def test_strict_equality_aliases(self, expression: str, operator: ComparisonOperator) -> None:
        assert compile_condition(expression).operator is operator

    @pytest.mark.parametrize(
        "expression",
        [
            "",
            "gas_concentration >",
            "> 500",
            "a > b",
            "a > 1 and b < 2",
            "__import__('os') > 1",
            "value = 1",
        ],
    )
    def test_malformed_expressions_raise(self, expression: str) -> None:
        with pytest.raises(EvaluationFailure):
            compile_condition(expression)

    def test_non_string_raises(self) -> None:
        with pytest.raises(EvaluationFailure) as exc_info:
            compile_condition(500)  # type: ignore[arg-type]

        assert exc_info.value.reason == "condition must be a string"

    def test_try_compile_returns_none(self) -> None:
        assert try_compile_condition("not a condition") is None


class TestConditionEvaluate:
    """Evaluation against events never raises."""

    def test_boundaries(self, make_event) -> None:
        event = make_event("t1", "temperature", temperature=35)

        assert compile_condition("temperature > 35").evaluate(event) is False
        assert compile_condition("temperature >= 35").evaluate(event) is True
        assert compile_condition("temperature == 35").evaluate(event) is True
        assert compile_condition("temperature != 35").evaluate(event) is False

    def test_missing_field_is_false(self, make_event) -> None:
        event = make_event("d1", "mq134", value=600)

        assert compile_condition("gas_concentration > 500").evaluate(event) is False

    def test_non_numeric_field_is_false(self, make_event) -> None:
        event = make_event("d1", "mq134", gas_concentration="600")

        assert compile_condition("gas_concentration > 500").evaluate(event) is False

    def test_extract_returns_value(self, make_event) -> None:
        event = make_event("d1", "mq134", sensor={"reading": 750})

        assert compile_condition("sensor.reading > 500").extract(event) == 750.0
