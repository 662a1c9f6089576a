import pytest

from app.extractor import EventTimeExtractor
from domain.models import InferenceEvent
from domain.windows import WindowAssigner, window_start_of


class FakeClock:
    def __init__(self, t: float):
        self.t = t

    def now_epoch(self) -> float:
        return self.t


def mk_event(added_time) -> InferenceEvent:
    return InferenceEvent(client_id="c", service_id="s", server_id="v", model="m", added_time=added_time)


def test_window_start_exact_boundary():
    assert window_start_of(20.0, 10.0) == 20.0


def test_window_start_rounds_down():
    assert window_start_of(27.9, 10.0) == 20.0
    assert window_start_of(1_700_000_003.5, 5.0) == 1_700_000_000.0


def test_assign_builds_half_open_window():
    a = WindowAssigner(size_sec=10, grace_sec=2)
    w = a.assign("A", 9.999)
    assert (w.key, w.start_epoch, w.end_epoch) == ("A", 0, 10)

    w2 = a.assign("A", 10.0)
    assert w2.start_epoch == 10


def test_window_closes_at_end_plus_grace():
    a = WindowAssigner(size_sec=10, grace_sec=2)
    w = a.assign("A", 1)

    assert a.close_time(w) == 12
    assert not a.is_closed(w, None)
    assert not a.is_closed(w, 11.999)
    assert a.is_closed(w, 12)


@pytest.mark.parametrize("size,grace", [(0, 2), (-1, 2), (10, 0), (10, -0.5)])
def test_assigner_requires_positive_durations(size, grace):
    with pytest.raises(ValueError):
        WindowAssigner(size_sec=size, grace_sec=grace)


def test_extractor_returns_payload_timestamp():
    ex = EventTimeExtractor(FakeClock(999.0))
    assert ex.extract(mk_event(42.5), previous_timestamp=10.0) == 42.5
    assert ex.fallbacks == 0


@pytest.mark.parametrize("bad", [None, float("nan"), float("inf"), -1.0])
def test_extractor_falls_back_to_previous_timestamp(bad):
    ex = EventTimeExtractor(FakeClock(999.0))
    assert ex.extract(mk_event(bad), previous_timestamp=10.0) == 10.0
    assert ex.fallbacks == 1


def test_extractor_uses_ingestion_time_without_previous():
    ex = EventTimeExtractor(FakeClock(999.0))
    assert ex.extract(mk_event(None), previous_timestamp=None) == 999.0
    assert ex.fallbacks == 1
