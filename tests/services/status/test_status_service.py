from datetime import datetime, timedelta, timezone

from presale_pulse.config import PulseConfig
from presale_pulse.delivery.state import DeliveryState
from presale_pulse.runner import status_payload
from presale_pulse.schedule.contracts import ScheduleEvent
from presale_pulse.service import create_app

T0 = datetime(2025, 8, 10, 12, tzinfo=timezone.utc)


def _client(provider):
    return create_app(provider).test_client()


def test_status_returns_provider_payload_with_cors():
    client = _client(lambda: {"totalRaised": 1200.0, "sentCount": 12, "completed": False})
    response = client.get("/status")
    assert response.status_code == 200
    assert response.get_json() == {"totalRaised": 1200.0, "sentCount": 12, "completed": False}
    assert response.headers["Access-Control-Allow-Origin"] == "*"


def test_unknown_path_is_json_404():
    response = _client(dict).get("/nope")
    assert response.status_code == 404
    assert response.get_json() == {"error": "Not Found"}
    assert response.headers["Access-Control-Allow-Origin"] == "*"


def test_preflight_gets_204():
    response = _client(dict).open("/status", method="OPTIONS")
    assert response.status_code == 204
    assert "GET" in response.headers["Access-Control-Allow-Methods"]


def test_provider_failure_is_json_500():
    def broken():
        raise RuntimeError("state unavailable")

    response = _client(broken).get("/status")
    assert response.status_code == 500
    assert response.get_json() == {"error": "Internal Server Error"}


def test_status_payload_reports_progress_and_phase():
    cfg = PulseConfig(
        special_phase={
            "enabled": True,
            "countdownStartUtc": "2025-08-10T11:00:00Z",
            "presaleStartUtc": "2025-08-10T12:00:00Z",
        }
    )
    state = DeliveryState(
        config_signature="sig",
        schedule=[ScheduleEvent(at=T0), ScheduleEvent(at=T0 + timedelta(minutes=3)), ScheduleEvent(at=T0 + timedelta(minutes=9))],
        effective_end=T0 + timedelta(hours=1),
        cursor=1,
        accumulated_value=100.0,
    )
    assert status_payload(state, cfg) == {
        "totalRaised": 100.0,
        "sentCount": 1,
        "remaining": 2,
        "completed": False,
        "effectiveEnd": "2025-08-10T13:00:00Z",
        "nextAt": "2025-08-10T12:03:00Z",
        "countdownStartUtc": "2025-08-10T11:00:00Z",
        "presaleStartUtc": "2025-08-10T12:00:00Z",
    }


def test_status_payload_before_state_exists():
    payload = status_payload(None, PulseConfig())
    assert payload["sentCount"] == 0
    assert payload["completed"] is False
    assert payload["nextAt"] is None
    assert payload["presaleStartUtc"] is None
