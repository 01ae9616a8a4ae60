from datetime import datetime, timedelta, timezone

import numpy as np

from presale_pulse.config import PulseConfig
from presale_pulse.delivery.loop import COMPLETED, DELIVERED, FAILED, WAITING, DeliveryLoop
from presale_pulse.delivery.notifier import SendResult
from presale_pulse.delivery.state import DeliveryState, FileStateStore, resume_or_plan
from presale_pulse.schedule.contracts import ScheduleEvent

T0 = datetime(2025, 8, 10, 12, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, at: datetime) -> None:
        self.at = at

    def now(self) -> datetime:
        return self.at

    def advance(self, seconds: float) -> None:
        self.at += timedelta(seconds=seconds)


class RecordingNotifier:
    def __init__(self, results=None) -> None:
        self.calls = []
        self._results = list(results or [])

    def send(self, channel_id, text, embeds=None, files=None):
        self.calls.append({"channel_id": channel_id, "text": text, "embeds": embeds, "files": files})
        if self._results:
            return self._results.pop(0)
        return SendResult(True, status_code=200)


class MemoryStore:
    def __init__(self) -> None:
        self.saved = []

    def load(self):
        return None

    def save(self, state: DeliveryState) -> None:
        self.saved.append((state.cursor, state.accumulated_value, state.completed))


def _config(tmp_path, **overrides) -> PulseConfig:
    values = {
        "start_time_utc": T0,
        "end_time_utc": T0 + timedelta(hours=1),
        "target_total_usd": 500,
        "amount_per_message_usd": 100,
        "min_per_hour": 1,
        "max_per_hour": 60,
        "bot_token": "token",
        "target_channel_id": "chan-1",
        "asset_dir": tmp_path,
        "state_path": tmp_path / "state.json",
    }
    values.update(overrides)
    return PulseConfig(**values)


def _state(events, accumulated: float = 0.0) -> DeliveryState:
    return DeliveryState(
        config_signature="sig",
        schedule=list(events),
        effective_end=T0 + timedelta(hours=1),
        accumulated_value=accumulated,
    )


def _loop(tmp_path, events, clock, notifier=None, store=None, **cfg_overrides) -> DeliveryLoop:
    return DeliveryLoop(
        _config(tmp_path, **cfg_overrides),
        _state(events),
        store or MemoryStore(),
        notifier or RecordingNotifier(),
        clock,
        sleep=lambda _seconds: None,
    )


def test_due_event_is_delivered_and_counted(tmp_path):
    notifier = RecordingNotifier()
    store = MemoryStore()
    loop = _loop(tmp_path, [ScheduleEvent(at=T0)], FakeClock(T0), notifier, store)
    outcome = loop.tick()
    assert outcome.status == DELIVERED
    assert outcome.index == 0
    assert outcome.delay_seconds == 1.0
    assert loop.state.cursor == 1
    assert loop.state.accumulated_value == 100
    assert store.saved == [(1, 100, False)]
    call = notifier.calls[0]
    assert call["channel_id"] == "chan-1"
    raised = next(f for f in call["embeds"][0]["fields"] if f["name"].endswith("Raised"))
    assert raised["value"] == "$100.00 / $500.00"
    fields = {f["name"]: f["value"] for f in call["embeds"][0]["fields"]}
    assert fields["👥 Spots Filled"] == "1 / 5"
    assert fields["⚡ Remaining"] == "4"
    assert fields["💎 Sold"] == "714.28 / 10,000,000.00 TOKENS"
    assert "footer" not in call["embeds"][0]


def test_event_within_tolerance_is_still_sent(tmp_path):
    notifier = RecordingNotifier()
    loop = _loop(tmp_path, [ScheduleEvent(at=T0)], FakeClock(T0 + timedelta(seconds=30)), notifier)
    assert loop.tick().status == DELIVERED
    assert len(notifier.calls) == 1


def test_stale_event_is_skipped_without_sending(tmp_path):
    notifier = RecordingNotifier()
    store = MemoryStore()
    loop = _loop(tmp_path, [ScheduleEvent(at=T0)], FakeClock(T0 + timedelta(seconds=31)), notifier, store)
    outcome = loop.tick()
    assert outcome.status == COMPLETED
    assert outcome.skipped == 1
    assert notifier.calls == []
    assert loop.state.cursor == 1
    assert loop.state.accumulated_value == 0
    assert loop.state.completed is True
    assert store.saved == [(1, 0, False), (1, 0, True)]


def test_skip_then_deliver_in_one_tick(tmp_path):
    events = [ScheduleEvent(at=T0 - timedelta(minutes=5)), ScheduleEvent(at=T0 - timedelta(minutes=1)), ScheduleEvent(at=T0)]
    notifier = RecordingNotifier()
    loop = _loop(tmp_path, events, FakeClock(T0), notifier)
    outcome = loop.tick()
    assert outcome.status == DELIVERED
    assert outcome.skipped == 2
    assert outcome.index == 2
    assert len(notifier.calls) == 1
    assert loop.state.accumulated_value == 100


def test_future_event_waits_at_most_five_seconds(tmp_path):
    clock = FakeClock(T0 - timedelta(seconds=3))
    notifier = RecordingNotifier()
    loop = _loop(tmp_path, [ScheduleEvent(at=T0)], clock, notifier)
    outcome = loop.tick()
    assert outcome.status == WAITING
    assert outcome.delay_seconds == 3.0
    clock.at = T0 - timedelta(minutes=10)
    assert loop.tick().delay_seconds == 5.0
    assert notifier.calls == []
    assert loop.state.cursor == 0


def test_failed_send_keeps_cursor_and_retries(tmp_path):
    notifier = RecordingNotifier([SendResult(False, "http_500", 500)])
    store = MemoryStore()
    clock = FakeClock(T0)
    loop = _loop(tmp_path, [ScheduleEvent(at=T0)], clock, notifier, store)
    outcome = loop.tick()
    assert outcome.status == FAILED
    assert outcome.reason == "http_500"
    assert outcome.delay_seconds == 1.0
    assert loop.state.cursor == 0
    assert loop.state.accumulated_value == 0
    assert store.saved == []

    clock.advance(1)
    assert loop.tick().status == DELIVERED
    assert loop.state.cursor == 1
    assert len(notifier.calls) == 2


def test_raising_notifier_counts_as_failure(tmp_path):
    class Exploding:
        def send(self, *_args, **_kwargs):
            raise RuntimeError("socket closed")

    loop = _loop(tmp_path, [ScheduleEvent(at=T0)], FakeClock(T0), Exploding())
    outcome = loop.tick()
    assert outcome.status == FAILED
    assert outcome.reason.startswith("notifier_error:")
    assert loop.state.cursor == 0


def test_announcements_do_not_add_value(tmp_path):
    (tmp_path / "5.png").write_bytes(b"png")
    events = [
        ScheduleEvent(at=T0, kind="countdown", text="5 MINUTES TO LAUNCH", image="5.png"),
        ScheduleEvent(at=T0, kind="start", image="live.png"),
    ]
    notifier = RecordingNotifier()
    loop = _loop(tmp_path, events, FakeClock(T0), notifier)
    assert loop.tick().status == DELIVERED
    assert loop.tick().status == DELIVERED
    assert loop.state.accumulated_value == 0
    countdown, start = notifier.calls
    assert countdown["text"] == "5 MINUTES TO LAUNCH"
    assert countdown["files"] == [tmp_path / "5.png"]
    assert "IS LIVE" in start["text"]
    assert start["files"] is None


def test_completion_is_persisted_once(tmp_path):
    store = MemoryStore()
    loop = _loop(tmp_path, [], FakeClock(T0), store=store)
    assert loop.tick().status == COMPLETED
    assert loop.tick().status == COMPLETED
    assert store.saved == [(0, 0, True)]


def test_run_sleeps_between_ticks_until_done(tmp_path):
    clock = FakeClock(T0)
    notifier = RecordingNotifier()
    events = [ScheduleEvent(at=T0), ScheduleEvent(at=T0 + timedelta(seconds=2)), ScheduleEvent(at=T0 + timedelta(seconds=7))]
    slept = []

    def fake_sleep(seconds):
        slept.append(seconds)
        clock.advance(seconds)

    loop = DeliveryLoop(_config(tmp_path), _state(events), MemoryStore(), notifier, clock, sleep=fake_sleep)
    outcome = loop.run()
    assert outcome.status == COMPLETED
    assert len(notifier.calls) == 3
    assert slept == [1.0, 1.0, 1.0, 4.0, 1.0]
    assert loop.state.accumulated_value == 300


def test_planned_schedule_delivers_end_to_end(tmp_path):
    cfg = _config(tmp_path)
    store = FileStateStore(cfg.state_path)
    state = resume_or_plan(cfg, store, np.random.default_rng(8))
    assert len(state.schedule) == 5
    clock = FakeClock(T0)
    notifier = RecordingNotifier()
    loop = DeliveryLoop(cfg, state, store, notifier, clock, sleep=lambda _s: None)
    for event in list(state.schedule):
        clock.at = event.at
        assert loop.tick().status == DELIVERED
    assert loop.tick().status == COMPLETED
    assert len(notifier.calls) == 5

    persisted = store.load()
    assert persisted.cursor == 5
    assert persisted.accumulated_value == 500
    assert persisted.completed is True


def test_restart_resumes_from_persisted_cursor(tmp_path):
    cfg = _config(tmp_path)
    store = FileStateStore(cfg.state_path)
    state = resume_or_plan(cfg, store, np.random.default_rng(8))
    clock = FakeClock(state.schedule[0].at)
    loop = DeliveryLoop(cfg, state, store, RecordingNotifier(), clock, sleep=lambda _s: None)
    loop.tick()
    clock.at = state.schedule[1].at
    loop.tick()

    resumed = resume_or_plan(cfg, FileStateStore(cfg.state_path), np.random.default_rng(999))
    assert resumed.cursor == 2
    assert resumed.accumulated_value == 200
    assert resumed.schedule == state.schedule


def test_buy_embed_footer_and_spots_track_total(tmp_path):
    notifier = RecordingNotifier()
    loop = _loop(
        tmp_path,
        [ScheduleEvent(at=T0)],
        FakeClock(T0),
        notifier,
        target_total_usd=1_400_000,
        footer_text="Presale feed",
    )
    loop.state.accumulated_value = 1_399_900
    loop.tick()
    embed = notifier.calls[0]["embeds"][0]
    fields = {f["name"]: f["value"] for f in embed["fields"]}
    assert fields["👥 Spots Filled"] == "14,000 / 14,000"
    assert fields["⚡ Remaining"] == "0"
    assert embed["footer"] == {"text": "Presale feed"}


class FlakyStore(MemoryStore):
    def __init__(self, failures: int) -> None:
        super().__init__()
        self.failures = failures

    def save(self, state: DeliveryState) -> None:
        if self.failures:
            self.failures -= 1
            raise OSError("disk full")
        super().save(state)


def test_failed_state_write_keeps_loop_alive(tmp_path):
    notifier = RecordingNotifier()
    store = FlakyStore(failures=1)
    loop = _loop(tmp_path, [ScheduleEvent(at=T0)], FakeClock(T0), notifier, store)
    outcome = loop.tick()
    assert outcome.status == FAILED
    assert outcome.reason.startswith("state_write_error:")
    assert outcome.delay_seconds == 1.0
    assert loop.state.cursor == 1
    assert store.saved == []

    assert loop.tick().status == COMPLETED
    assert len(notifier.calls) == 1
    assert store.saved == [(1, 100, False), (1, 100, True)]


def test_run_survives_repeated_write_failures(tmp_path):
    clock = FakeClock(T0)
    notifier = RecordingNotifier()
    store = FlakyStore(failures=3)

    def fake_sleep(seconds):
        clock.advance(seconds)

    events = [ScheduleEvent(at=T0), ScheduleEvent(at=T0 + timedelta(seconds=2))]
    loop = DeliveryLoop(_config(tmp_path), _state(events), store, notifier, clock, sleep=fake_sleep)
    assert loop.run().status == COMPLETED
    assert len(notifier.calls) == 2
    assert store.saved[-1] == (2, 200, True)


def test_failed_completion_write_is_retried(tmp_path):
    store = FlakyStore(failures=1)
    loop = _loop(tmp_path, [], FakeClock(T0), store=store)
    outcome = loop.tick()
    assert outcome.status == FAILED
    assert loop.state.completed is False
    assert loop.tick().status == COMPLETED
    assert store.saved[-1] == (0, 0, True)
