"""Tests for multi-sensor correlation and occupancy tracking."""

import pytest

from sensor_analytics.detection.correlation import CorrelationTracker
from sensor_analytics.models.alerts import AlertCategory
from sensor_analytics.models.rules import Severity


@pytest.fixture
def tracker(notifier, clock) -> CorrelationTracker:
    return CorrelationTracker(notifier=notifier, clock=clock)


def rule_ids(alerts):
    return [alert.rule_id for alert in alerts]


class TestOccupancy:
    """Presence sets and clears the flag; motion can only set it."""

    def test_motion_marks_space_occupied(self, tracker, make_event) -> None:
        alerts = tracker.process(make_event("m1", "pir", location="lab", value=1))

        assert rule_ids(alerts) == ["correlation_occupancy_change"]
        assert alerts[0].message == "Space occupied"
        assert alerts[0].category is AlertCategory.CORRELATION
        assert tracker.get_occupancy_state("lab") is True

    def test_motion_stopping_does_not_vacate(self, tracker, make_event) -> None:
        tracker.process(make_event("m1", "pir", location="lab", value=1))

        alerts = tracker.process(make_event("m1", "pir", location="lab", value=0))

        assert alerts == []
        assert tracker.get_occupancy_state("lab") is True

    def test_negative_presence_vacates(self, tracker, make_event) -> None:
        tracker.process(make_event("m1", "pir", location="lab", value=1))

        alerts = tracker.process(make_event("p1", "ld2410", location="lab", value=0))

        assert rule_ids(alerts) == ["correlation_occupancy_change"]
        assert alerts[0].message == "Space vacated"
        assert alerts[0].details["previous_state"] is True
        assert tracker.get_occupancy_state("lab") is False

    def test_presence_flag_field(self, tracker, make_event) -> None:
        event = make_event("p1", "presence", location="hall", presence=True)

        assert tracker.is_presence_positive(event) is True
        tracker.process(event)
        assert tracker.get_occupancy_state("hall") is True

    def test_location_defaults_to_device(self, tracker, make_event) -> None:
        tracker.process(make_event("p9", "ld2410", value=1))

        assert tracker.get_occupancy_state("p9") is True

    def test_unchanged_state_is_silent(self, tracker, make_event) -> None:
        tracker.process(make_event("p1", "ld2410", location="lab", value=0))

        assert tracker.get_occupancy_state("lab") is False
        assert tracker.get_occupancy_stats()["total_locations"] == 1


class TestPresenceWithMotion:
    def test_confirmed_occupancy(self, tracker, notifier, make_event) -> None:
        tracker.process(make_event("p1", "ld2410", location="lab", value=1))

        alerts = tracker.process(make_event("m1", "pir", location="lab", value=1))

        assert rule_ids(alerts) == ["correlation_confirmed_occupancy"]
        assert alerts[0].severity is Severity.INFO
        assert alerts[0].details["confidence"] == "high"
        assert notifier.submitted[-1] == (alerts[0], ("webhook",))

    def test_motion_outside_window_does_not_confirm(self, tracker, make_event, clock) -> None:
        tracker.process(make_event("m1", "pir", location="lab", value=1))
        clock.advance(seconds=60)

        alerts = tracker.process(make_event("p1", "ld2410", location="lab", value=1))

        assert "correlation_confirmed_occupancy" not in rule_ids(alerts)

    def test_stationary_presence_needs_more_than_five_events(self, tracker, make_event) -> None:
        for _ in range(5):
            alerts = tracker.process(make_event("p1", "ld2410", location="lab", value=1))
        assert "correlation_stationary_presence" not in rule_ids(alerts)

        alerts = tracker.process(make_event("p1", "ld2410", location="lab", value=1))

        assert rule_ids(alerts) == ["correlation_stationary_presence"]
        assert alerts[0].details == {
            "correlation_type": "stationary_presence",
            "channels": ["webhook"],
            "confidence": "medium",
            "event_count": 6,
        }


class TestGasWithOccupancy:
    @pytest.fixture(autouse=True)
    def occupy_lab(self, tracker, make_event) -> None:
        tracker.process(make_event("p1", "ld2410", location="lab", value=1))

    def test_critical_gas_in_occupied_space(self, tracker, notifier, make_event) -> None:
        alerts = tracker.process(make_event("g1", "mq134", location="lab", gas_concentration=550))

        assert rule_ids(alerts) == ["correlation_gas_with_occupancy"]
        assert alerts[0].severity is Severity.CRITICAL
        assert alerts[0].value == 550
        assert notifier.submitted[-1][1] == ("email", "sms", "webhook")

    @pytest.mark.parametrize("level", [300, 499])
    def test_warning_gas_in_occupied_space(self, tracker, notifier, make_event, level) -> None:
        alerts = tracker.process(make_event("g1", "mq134", location="lab", gas_concentration=level))

        assert alerts[0].severity is Severity.WARNING
        assert notifier.submitted[-1][1] == ("email", "webhook")

    def test_low_gas_is_ignored(self, tracker, make_event) -> None:
        alerts = tracker.process(make_event("g1", "mq134", location="lab", gas_concentration=299))

        assert alerts == []

    def test_gas_in_vacant_space_is_ignored(self, tracker, make_event) -> None:
        alerts = tracker.process(make_event("g2", "mq134", location="office", value=900))

        assert alerts == []


class TestMultiSensorAnomaly:
    def test_two_anomalous_sensor_types(self, tracker, notifier, make_event, make_alert) -> None:
        tracker.process(
            make_event("t1", "temperature", location="lab", temperature=90),
            related_alerts=[make_alert(rule_id="hot", device_id="t1")],
        )

        alerts = tracker.process(
            make_event("g1", "mq134", location="lab", gas_concentration=100),
            related_alerts=[
                make_alert(
                    rule_id="anomaly_sudden_spike",
                    device_id="g1",
                    severity=Severity.WARNING,
                    category=AlertCategory.ANOMALY,
                )
            ],
        )

        assert rule_ids(alerts) == ["correlation_multi_sensor_anomaly"]
        assert alerts[0].severity is Severity.CRITICAL
        assert alerts[0].details["affected_sensors"] == ["mq134", "temperature"]
        assert alerts[0].message == "Multiple sensors reporting anomalies in lab"
        assert notifier.submitted[-1][1] == ("email", "webhook")

    def test_anomaly_marker_in_payload(self, tracker, make_event) -> None:
        tracker.process(make_event("t1", "temperature", location="lab", anomaly_type="flatline"))

        alerts = tracker.process(make_event("g1", "mq134", location="lab", alert_level="critical"))

        assert rule_ids(alerts) == ["correlation_multi_sensor_anomaly"]

    def test_single_sensor_type_is_not_enough(self, tracker, make_event, make_alert) -> None:
        for device_id in ("g1", "g2"):
            alerts = tracker.process(
                make_event(device_id, "mq134", location="lab", gas_concentration=100),
                related_alerts=[make_alert(device_id=device_id)],
            )

        assert alerts == []


class TestBuffers:
    def test_old_entries_are_purged(self, tracker, make_event, clock) -> None:
        tracker.process(make_event("m1", "pir", location="lab", value=0))
        clock.advance(seconds=120)

        tracker.process(make_event("m2", "pir", location="hall", value=0))

        assert tracker.get_buffer("lab") == []
        assert len(tracker.get_buffer("hall")) == 1

    def test_buffer_is_bounded(self, notifier, clock, make_event) -> None:
        tracker = CorrelationTracker(notifier=notifier, buffer_size=3, clock=clock)
        for _ in range(5):
            tracker.process(make_event("m1", "pir", location="lab", value=0))

        assert len(tracker.get_buffer("lab")) == 3

    def test_occupancy_outlives_buffer(self, tracker, make_event, clock) -> None:
        tracker.process(make_event("p1", "ld2410", location="lab", value=1))
        clock.advance(minutes=30)
        tracker.process(make_event("m2", "pir", location="hall", value=0))

        assert tracker.get_buffer("lab") == []
        assert tracker.get_occupancy_state("lab") is True

    def test_stats(self, tracker, make_event) -> None:
        tracker.process(make_event("p1", "ld2410", location="lab", value=1))
        tracker.process(make_event("p2", "ld2410", location="hall", value=0))

        assert tracker.get_occupancy_stats() == {
            "total_locations": 2,
            "occupied_count": 1,
            "vacant_count": 1,
            "locations": {"lab": True, "hall": False},
        }

    def test_clear_buffer(self, tracker, make_event) -> None:
        tracker.process(make_event("p1", "ld2410", location="lab", value=1))
        tracker.clear_buffer("lab")

        assert tracker.get_occupancy_state("lab") is False
        assert tracker.get_buffer("lab") == []
