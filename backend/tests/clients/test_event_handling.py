"""Tests for folding events into the guider status.

Lines are fed straight into the client's line handler, no socket needed.
"""

import json
import logging

import pytest

from phd2link.clients.events import GuiderEvent, StartGuidingEvent, UnknownEvent
from phd2link.clients.phd2_client import PHD2Client
from phd2link.models.guider_models import AppState


@pytest.fixture
def client(test_settings):
    return PHD2Client("localhost", 1, settings=test_settings)


def feed(client: PHD2Client, *events: dict) -> None:
    for event in events:
        client._handle_line(json.dumps(event))


def guide_step(ra: float, dec: float, avg: float = 0.5) -> dict:
    return {"Event": "GuideStep", "RADistanceRaw": ra, "DECDistanceRaw": dec, "AvgDist": avg}


class TestAppState:
    def test_initial_state(self, client):
        status = client.get_status()
        assert status.app_state == "Stopped"
        assert status.is_guiding is False
        assert status.is_settling is False
        assert status.is_connected is False
        assert status.last_star_lost is None

    def test_app_state_event(self, client):
        feed(client, {"Event": "AppState", "State": "Guiding"})
        assert client.app_state == AppState.GUIDING
        assert client.get_status().is_guiding is True

    def test_unknown_app_state_is_ignored(self, client, caplog):
        feed(client, {"Event": "AppState", "State": "Paused"})
        with caplog.at_level(logging.WARNING):
            feed(client, {"Event": "AppState", "State": "Exploding"})
        assert client.app_state == AppState.PAUSED
        assert "Unknown PHD2 app state" in caplog.text

    def test_guiding_to_star_lost(self, client):
        feed(
            client,
            {"Event": "AppState", "State": "Guiding"},
            guide_step(1.0, -1.0, avg=0.5),
            {
                "Event": "StarLost",
                "Frame": 10,
                "Time": 25.0,
                "StarMass": 1200.0,
                "SNR": 3.5,
                "AvgDist": 2.75,
                "ErrorCode": 1,
                "Status": "Star lost - mass changed",
            },
        )

        status = client.get_status()
        assert status.app_state == "LostLock"
        assert status.avg_dist == 2.75
        assert status.is_guiding is True
        assert status.last_star_lost.frame == 10
        assert status.last_star_lost.snr == 3.5
        assert status.last_star_lost.status == "Star lost - mass changed"
        assert status.last_star_lost.timestamp is not None

    def test_star_lost_survives_state_changes(self, client):
        feed(
            client,
            {
                "Event": "StarLost",
                "Frame": 3,
                "Time": 1.0,
                "StarMass": 0.0,
                "SNR": 0.0,
                "AvgDist": 1.0,
                "ErrorCode": 2,
                "Status": "lost",
            },
            {"Event": "GuidingStopped"},
            {"Event": "StartGuiding"},
        )
        assert client.app_state == AppState.GUIDING
        assert client.get_status().last_star_lost.frame == 3

    def test_simple_transitions(self, client):
        feed(client, {"Event": "StartGuiding"})
        assert client.app_state == AppState.GUIDING
        feed(client, {"Event": "Paused"})
        assert client.app_state == AppState.PAUSED
        feed(client, {"Event": "GuidingStopped"})
        assert client.app_state == AppState.STOPPED
        feed(client, {"Event": "LoopingExposures", "Frame": 1})
        assert client.app_state == AppState.LOOPING
        feed(client, {"Event": "StarSelected", "X": 10.0, "Y": 20.0})
        assert client.app_state == AppState.SELECTED
        feed(client, {"Event": "StartCalibration"})
        assert client.app_state == AppState.CALIBRATING

    def test_version(self, client):
        feed(client, {"Event": "Version", "PHDVersion": "2.6.13", "PHDSubver": "dev2"})
        status = client.get_status()
        assert status.version == "2.6.13"
        assert status.phd_subver == "dev2"


class TestGuideStats:
    def test_no_stats_before_start_guiding(self, client):
        feed(client, guide_step(1.0, 1.0), guide_step(3.0, -3.0))
        assert client.stats.rms_ra == 0.0
        assert client.stats.peak_ra == 0.0
        # State and distance still follow the step
        assert client.app_state == AppState.GUIDING
        assert client.get_status().avg_dist == 0.5

    def test_stats_accumulate_after_start_guiding(self, client):
        feed(client, {"Event": "StartGuiding"}, guide_step(1.0, 2.0), guide_step(-1.0, -2.0))

        stats = client.get_status().stats
        assert stats.rms_ra == pytest.approx(2 ** 0.5)
        assert stats.rms_dec == pytest.approx(8 ** 0.5)
        assert stats.rms_total == pytest.approx((2 + 8) ** 0.5)
        assert stats.peak_ra == 1.0
        assert stats.peak_dec == 2.0

    def test_settle_pauses_accumulation(self, client):
        feed(client, {"Event": "StartGuiding"}, guide_step(1.0, 0.0), guide_step(-1.0, 0.0))
        before = client.stats

        feed(client, {"Event": "SettleBegin"}, guide_step(50.0, 50.0))
        assert client.stats == before

        feed(client, {"Event": "SettleDone", "Status": 0}, guide_step(0.0, 0.0))
        assert client.stats.peak_ra == 1.0
        assert client.stats != before

    def test_start_guiding_resets(self, client):
        feed(client, {"Event": "StartGuiding"}, guide_step(9.0, 9.0), guide_step(-9.0, -9.0))
        feed(client, {"Event": "StartGuiding"}, guide_step(1.0, 1.0))
        # Only one sample since the reset: stdev 0, peak from the new sample
        assert client.stats.rms_ra == 0.0
        assert client.stats.peak_ra == 1.0

    def test_snapshot_is_independent(self, client):
        feed(client, {"Event": "StartGuiding"}, guide_step(1.0, 1.0), guide_step(2.0, 2.0))
        snapshot = client.get_status()
        feed(client, guide_step(30.0, 30.0))
        assert snapshot.stats.peak_ra == 2.0
        assert client.get_status().stats.peak_ra == 30.0


class TestSettleEvents:
    def test_settling_event_uses_last_requested_threshold(self, client):
        client._settle_px = 1.5
        feed(client, {"Event": "Settling", "Distance": 4.0, "Time": 2.0, "SettleTime": 10.0})

        progress = client.get_status().settle_progress
        assert progress.done is False
        assert progress.distance == 4.0
        assert progress.settle_px == 1.5
        assert progress.time == 2.0
        assert progress.settle_time == 10.0
        assert progress.status == 0

    def test_settle_done(self, client):
        feed(client, {"Event": "SettleDone", "Status": 1, "Error": "timed-out waiting for guider to settle"})
        status = client.get_status()
        assert status.is_settling is True
        assert status.settle_progress.done is True
        assert status.settle_progress.status == 1
        assert status.settle_progress.error == "timed-out waiting for guider to settle"


class TestRobustness:
    def test_malformed_line_then_valid_event(self, client):
        client._handle_line("{this is not json")
        client._handle_line(json.dumps({"Event": "AppState", "State": "Guiding"}))
        assert client.app_state == AppState.GUIDING

    def test_non_object_json_is_ignored(self, client):
        client._handle_line("[1, 2, 3]")
        assert client.app_state == AppState.STOPPED

    def test_event_missing_fields_is_ignored(self, client):
        feed(client, {"Event": "StartGuiding"}, {"Event": "GuideStep", "RADistanceRaw": 1.0})
        assert len(client._accum_ra) == 0

    def test_reply_with_unknown_id_is_dropped(self, client, caplog):
        with caplog.at_level(logging.WARNING):
            client._handle_line(json.dumps({"jsonrpc": "2.0", "id": 99, "result": 0}))
        assert "unknown id 99" in caplog.text
        assert client._pending_responses == {}


class TestEventListeners:
    def test_listener_sees_every_event(self, client):
        seen = []
        client.subscribe_events(seen.append)
        feed(client, {"Event": "StartGuiding"}, {"Event": "LockPositionSet", "X": 1.0, "Y": 2.0})

        assert isinstance(seen[0], StartGuidingEvent)
        assert isinstance(seen[1], UnknownEvent)
        assert seen[1].name == "LockPositionSet"

    def test_listener_runs_after_status_update(self, client):
        states = []
        client.subscribe_events(lambda event: states.append(client.app_state))
        feed(client, {"Event": "Paused"})
        assert states == [AppState.PAUSED]

    def test_failing_listener_does_not_break_handling(self, client):
        def broken(event: GuiderEvent) -> None:
            raise RuntimeError("boom")

        client.subscribe_events(broken)
        feed(client, {"Event": "Paused"})
        assert client.app_state == AppState.PAUSED

    def test_unsubscribe(self, client):
        seen = []
        client.subscribe_events(seen.append)
        client.unsubscribe_events(seen.append)
        feed(client, {"Event": "Paused"})
        assert seen == []
