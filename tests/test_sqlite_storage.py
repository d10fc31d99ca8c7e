import sqlite3
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest

from alerts.models import AlertRecord, AlertType, Severity
from core.errors import ConfigurationError
from core.models import MetricCandle, MetricReport, MetricType, OHLCValues, Resolution, utc_now


BASE = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _report(minutes, cpu=50.0, memory=None, agent_id="agent-1"):
    return MetricReport(agent_id=agent_id, ts=BASE + timedelta(minutes=minutes), cpu_percent=cpu, memory_percent=memory)


def _record(agent_id="agent-1", configuration_id=1, triggered_at=None, severity=Severity.LOW):
    return AlertRecord(
        id=None,
        agent_id=agent_id,
        configuration_id=configuration_id,
        alert_name="High CPU",
        alert_type=AlertType.HIGH_UTILIZATION,
        metric_type=MetricType.CPU,
        severity=severity,
        indicator_count=2,
        contributing_indicators={"RSI": {"value": 85.0, "signal": "high_extreme", "is_extreme": True}},
        metric_values={"cpu_percent": 91.0},
        triggered_at=triggered_at or utc_now(),
    )


# =============================================================================
# Metrics
# =============================================================================

def test_metrics_are_returned_oldest_first_and_limited(storage):
    storage.save_reports([_report(i * 5, cpu=float(i)) for i in range(10)])

    df = storage.get_metrics_df("agent-1", limit=4)

    assert list(df["cpu_percent"]) == [6.0, 7.0, 8.0, 9.0]
    assert df["collected_at"].is_monotonic_increasing
    assert storage.get_metrics_df("nobody").empty


def test_latest_report_round_trips(storage):
    storage.save_reports([_report(0, cpu=10.0), _report(5, cpu=20.0, memory=33.0)])

    latest = storage.get_latest_report("agent-1")

    assert latest.cpu_percent == 20.0
    assert latest.memory_percent == 33.0
    assert latest.ts == BASE + timedelta(minutes=5)


def test_candles_upsert_on_start(storage):
    def candle(close):
        return MetricCandle(
            agent_id="agent-1",
            resolution=Resolution.MIN_15,
            ts=BASE,
            ts_end=BASE + timedelta(minutes=15),
            cpu=OHLCValues(open=10.0, high=max(20.0, close), low=5.0, close=close),
            data_points=3,
        )

    storage.save_candles([candle(12.0)])
    storage.save_candles([candle(18.0)])

    df = storage.get_candles_df("agent-1", Resolution.MIN_15)

    assert len(df) == 1
    assert df["cpu_close"].iloc[0] == 18.0
    assert df["memory_close"].isna().all()
    assert storage.get_agents() == ["agent-1"]


def test_candle_merge_keeps_stored_open_and_extremes(storage):
    start = MetricCandle(
        agent_id="agent-1",
        resolution=Resolution.MIN_15,
        ts=BASE,
        ts_end=BASE + timedelta(minutes=15),
        cpu=OHLCValues(open=10.0, high=90.0, low=5.0, close=20.0),
        data_points=3,
    )
    rest = start.model_copy(update={
        "cpu": OHLCValues(open=30.0, high=95.0, low=25.0, close=28.0),
        "memory": OHLCValues(open=40.0, high=45.0, low=40.0, close=44.0),
        "data_points": 2,
    })

    storage.save_candles([start])
    storage.save_candles([rest], merge=True)

    row = storage.get_candles_df("agent-1", Resolution.MIN_15).iloc[0]
    assert (row["cpu_open"], row["cpu_high"], row["cpu_low"], row["cpu_close"]) == (10.0, 95.0, 5.0, 28.0)
    assert (row["memory_open"], row["memory_high"], row["memory_low"], row["memory_close"]) == (40.0, 45.0, 40.0, 44.0)
    assert row["data_points"] == 5


def test_agent_resolution_override(storage):
    assert storage.get_agent_resolution("agent-1") is None

    storage.set_agent_resolution("agent-1", Resolution.HOUR_1)
    assert storage.get_agent_resolution("agent-1") == Resolution.HOUR_1

    storage.set_agent_resolution("agent-1", None)
    assert storage.get_agent_resolution("agent-1") is None


# =============================================================================
# Configurations
# =============================================================================

def test_configuration_crud(storage, high_cpu_config):
    created = storage.create_configuration(high_cpu_config, created_by="ops")

    assert created.id is not None
    assert created.created_by == "ops"
    assert created.to_dict()["rsi_thresholds"] == {"enabled": True}
    assert [c.id for c in storage.get_enabled_configurations()] == [created.id]

    updated = storage.update_configuration(created.id, {"min_indicator_count": 3}, updated_by="lead")
    assert updated.min_indicator_count == 3
    assert updated.updated_by == "lead"
    assert updated.is_indicator_enabled("RSI")

    deleted = storage.delete_configuration(created.id)
    assert deleted.enabled is False
    assert storage.get_enabled_configurations() == []
    assert len(storage.list_configurations()) == 1


def test_invalid_update_is_rejected(storage, high_cpu_config):
    created = storage.create_configuration(high_cpu_config)

    with pytest.raises(ConfigurationError):
        storage.update_configuration(created.id, {"alert_type": "sideways"})

    assert storage.get_configuration(created.id).alert_type == AlertType.HIGH_UTILIZATION


def test_missing_configuration(storage):
    assert storage.get_configuration(42) is None
    assert storage.update_configuration(42, {"enabled": False}) is None
    assert storage.delete_configuration(42) is None


def test_malformed_rows_are_skipped(storage, high_cpu_config):
    storage.create_configuration(high_cpu_config)
    with sqlite3.connect(storage.db_path) as conn:
        conn.execute(
            "INSERT INTO alert_configurations (alert_name, alert_type) VALUES (?, ?)",
            ["legacy", "sideways"],
        )

    configs = storage.get_enabled_configurations()

    assert [c.alert_name for c in configs] == ["High CPU"]


# =============================================================================
# Alert History
# =============================================================================

def test_save_if_absent_suppresses_duplicates(storage):
    first = storage.save_alert_if_absent(_record(), 15)
    second = storage.save_alert_if_absent(_record(), 15)

    assert first.id is not None
    assert first.contributing_indicators["RSI"]["signal"] == "high_extreme"
    assert second is None
    assert storage.has_recent_similar_alert("agent-1", 1, 15)


def test_cooldown_is_scoped_to_agent_and_configuration(storage):
    storage.save_alert_if_absent(_record(), 15)

    assert storage.save_alert_if_absent(_record(agent_id="agent-2"), 15) is not None
    assert storage.save_alert_if_absent(_record(configuration_id=2), 15) is not None
    assert storage.save_alert_if_absent(_record(configuration_id=None), 15) is not None
    assert storage.save_alert_if_absent(_record(configuration_id=None), 15) is None


def test_old_and_resolved_alerts_do_not_block(storage):
    storage.save_alert(_record(triggered_at=utc_now() - timedelta(minutes=20)))
    assert storage.save_alert_if_absent(_record(), 15) is not None

    other = storage.save_alert_if_absent(_record(configuration_id=3), 15)
    storage.resolve_alert(other.id, resolved_by="ops", notes="fixed")
    assert storage.save_alert_if_absent(_record(configuration_id=3), 15) is not None


def test_concurrent_writers_insert_once(storage):
    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(lambda _: storage.save_alert_if_absent(_record(), 15), range(8)))

    assert sum(r is not None for r in results) == 1
    assert len(storage.get_alert_history()) == 1


def test_history_filters_and_lifecycle(storage):
    low = storage.save_alert(_record(severity=Severity.LOW))
    critical = storage.save_alert(_record(agent_id="agent-2", severity=Severity.CRITICAL))

    assert [a.id for a in storage.get_alert_history()] == [critical.id, low.id]
    assert [a.id for a in storage.get_alert_history(agent_id="agent-1")] == [low.id]
    assert [a.id for a in storage.get_alert_history(severity="critical")] == [critical.id]

    acknowledged = storage.acknowledge_alert(low.id, acknowledged_by="ops")
    assert acknowledged.acknowledged_by == "ops"
    assert [a.id for a in storage.get_alert_history(acknowledged=True)] == [low.id]

    resolved = storage.resolve_alert(critical.id, resolved_by="ops", notes="rebooted")
    assert not resolved.is_active
    assert resolved.notes == "rebooted"
    assert [a.id for a in storage.get_active_alerts()] == [low.id]

    assert storage.acknowledge_alert(999) is None
    assert storage.resolve_alert(999) is None


def test_alert_stats(storage):
    empty = storage.get_alert_stats()
    assert empty["total_alerts"] == 0
    assert empty["avg_resolution_time_seconds"] is None

    first = storage.save_alert(_record(severity=Severity.HIGH, triggered_at=utc_now() - timedelta(minutes=10)))
    storage.save_alert(_record(severity=Severity.LOW))
    storage.resolve_alert(first.id)

    stats = storage.get_alert_stats()

    assert stats["total_alerts"] == 2
    assert stats["high_count"] == 1
    assert stats["low_count"] == 1
    assert stats["resolved_count"] == 1
    assert stats["acknowledged_count"] == 0
    assert stats["avg_resolution_time_seconds"] > 0
