from src.config import Config
from src.observability.metrics import (
    increment_counter,
    set_gauge,
    observe_latency,
    record_event,
    get_counter_value,
    get_metrics_snapshot,
    reset_metrics,
)


def test_metrics_snapshot_accumulates_counts():
    reset_metrics()
    increment_counter("test_counter")
    increment_counter("test_counter", amount=2, labels={"route": "/example"})
    set_gauge("test_gauge", 5)
    observe_latency("test_latency", 100, labels={"route": "/example"})
    observe_latency("test_latency", 50, labels={"route": "/example"})

    snapshot = get_metrics_snapshot()
    counters = snapshot["counters"]["test_counter"]
    assert len(counters) == 2

    gauges = snapshot["gauges"]["test_gauge"]
    assert gauges[0]["value"] == 5

    hist = snapshot["histograms"]["test_latency"][0]["stats"]
    assert hist["count"] == 2
    assert hist["max"] == 100


def test_counter_lookup_by_labels():
    increment_counter("mega_offer_winners_total", amount=3, labels={"policy": "admin"})
    increment_counter("mega_offer_winners_total", amount=1, labels={"policy": "user"})

    assert get_counter_value("mega_offer_winners_total") == 4
    assert get_counter_value("mega_offer_winners_total", labels={"policy": "admin"}) == 3
    assert get_counter_value("mega_offer_winners_total", labels={"policy": "lottery"}) == 0


def test_business_events_are_bounded():
    for index in range(Config.METRICS_MAX_EVENTS + 5):
        record_event("prebooking_confirmed", {"participant_id": index})

    events = get_metrics_snapshot()["events"]
    assert len(events) == Config.METRICS_MAX_EVENTS
    assert events[-1]["payload"] == {"participant_id": Config.METRICS_MAX_EVENTS + 4}


def test_disabled_observability_records_nothing(monkeypatch):
    monkeypatch.setattr(Config, "OBSERVABILITY_ENABLED", False)

    increment_counter("test_counter")
    record_event("sale_order_created", {"order_id": 1})

    snapshot = get_metrics_snapshot()
    assert snapshot["counters"] == {}
    assert snapshot["events"] == []
