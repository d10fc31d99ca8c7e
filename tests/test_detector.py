import asyncio
from datetime import timedelta

from alerts.engine import ConfluenceDetector
from alerts.models import AlertConfiguration, Severity
from core.config import Settings
from core.errors import StoreUnavailableError
from core.models import MetricSnapshot, MetricType, Resolution, utc_now


class FakeWindows:
    def __init__(self, make_window, values, resolution=Resolution.RAW, delay=0.0):
        self.make_window = make_window
        self.values = values
        self.resolution = resolution
        self.delay = delay
        self.requests = []

    async def get_effective_resolution(self, agent_id):
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.resolution

    async def get_window(self, agent_id, resolution, lookback, metric_type):
        self.requests.append((agent_id, resolution, lookback, metric_type))
        values = self.values.get(metric_type, [])[-lookback:]
        return self.make_window(values, metric_type=metric_type, resolution=resolution, agent_id=agent_id)


class FakeConfigurations:
    def __init__(self, configurations=None, error=None):
        self.configurations = configurations or []
        self.error = error

    async def get_enabled_configurations(self):
        if self.error:
            raise self.error
        return [c for c in self.configurations if c.enabled]


class FakeHistory:
    def __init__(self):
        self.records = []
        self._lock = asyncio.Lock()

    async def has_recent_similar_alert(self, agent_id, configuration_id, window_minutes):
        since = utc_now() - timedelta(minutes=window_minutes)
        return any(
            r.agent_id == agent_id and r.configuration_id == configuration_id
            and r.triggered_at > since and r.resolved_at is None
            for r in self.records
        )

    async def save_alert(self, record):
        record.id = len(self.records) + 1
        self.records.append(record)
        return record

    async def save_alert_if_absent(self, record, window_minutes):
        async with self._lock:
            if await self.has_recent_similar_alert(record.agent_id, record.configuration_id, window_minutes):
                return None
            return await self.save_alert(record)


def _config(config_id=1, **overrides):
    data = {
        "id": config_id,
        "alert_name": f"High CPU {config_id}",
        "alert_type": "high_utilization",
        "rsi_thresholds": {"enabled": True},
        "stochastic_thresholds": {"enabled": True},
        "williams_r_thresholds": {"enabled": True},
    }
    data.update(overrides)
    return AlertConfiguration.from_dict(data)


RISING = {MetricType.CPU: [float(v) for v in range(50, 65)]}


def _detector(make_window, values=RISING, configurations=None, settings=None, **window_kwargs):
    history = FakeHistory()
    detector = ConfluenceDetector(
        FakeWindows(make_window, values, **window_kwargs),
        FakeConfigurations([_config()] if configurations is None else configurations),
        history,
        settings=settings,
    )
    return detector, history


def test_detection_emits_and_persists_alert(make_window):
    async def scenario():
        detector, history = _detector(make_window)
        seen = []
        detector.on_alert(seen.append)

        snapshot = MetricSnapshot(cpu_percent=64.0, memory_percent=30.0, disk_percent=40.0)
        summaries = await detector.detect_and_create_alerts("agent-1", snapshot)
        event = await detector.get_event(timeout=0.1)
        return detector, history, summaries, seen, event

    detector, history, summaries, seen, event = asyncio.run(scenario())

    assert len(summaries) == 1
    assert summaries[0].severity == Severity.MEDIUM
    assert summaries[0].indicator_count == 3
    assert summaries[0].id == 1

    record = history.records[0]
    assert record.metric_values["cpu_percent"] == 64.0
    assert set(record.contributing_indicators) == {"RSI", "Stochastic", "Williams %R"}
    assert seen == [record]
    assert event is record
    assert detector.get_history() == [record]
    assert detector.stats()["triggers"] == 1


def test_repeat_detection_is_suppressed(make_window):
    async def scenario():
        detector, history = _detector(make_window)
        first = await detector.detect_and_create_alerts("agent-1")
        second = await detector.detect_and_create_alerts("agent-1")
        return detector, history, first, second

    detector, history, first, second = asyncio.run(scenario())

    assert len(first) == 1
    assert second == []
    assert len(history.records) == 1
    assert detector.stats()["suppressed"] == 1


def test_resolved_alert_no_longer_blocks(make_window):
    async def scenario():
        detector, history = _detector(make_window)
        await detector.detect_and_create_alerts("agent-1")
        history.records[0].resolved_at = utc_now()
        return await detector.detect_and_create_alerts("agent-1")

    assert len(asyncio.run(scenario())) == 1


def test_cooldown_is_per_agent_and_configuration(make_window):
    async def scenario():
        detector, history = _detector(make_window, configurations=[_config(1), _config(2)])
        first = await detector.detect_and_create_alerts("agent-1")
        other_agent = await detector.detect_and_create_alerts("agent-2")
        return first, other_agent

    first, other_agent = asyncio.run(scenario())

    assert len(first) == 2
    assert len(other_agent) == 2


def test_concurrent_reports_create_one_alert(make_window):
    async def scenario():
        detector, history = _detector(make_window)
        results = await asyncio.gather(*(detector.detect_and_create_alerts("agent-1") for _ in range(5)))
        return history, results

    history, results = asyncio.run(scenario())

    assert len(history.records) == 1
    assert sum(len(r) for r in results) == 1


def test_insufficient_data_returns_nothing(make_window):
    async def scenario():
        detector, _ = _detector(make_window, values={MetricType.CPU: [50.0] * 13})
        return detector, await detector.detect_and_create_alerts("agent-1")

    detector, summaries = asyncio.run(scenario())

    assert summaries == []
    assert detector.stats()["insufficient_data"] == 1


def test_no_configurations_returns_nothing(make_window):
    async def scenario():
        detector, _ = _detector(make_window, configurations=[])
        return await detector.detect_and_create_alerts("agent-1")

    assert asyncio.run(scenario()) == []


def test_store_timeout_fails_closed(make_window):
    async def scenario():
        detector, history = _detector(make_window, settings=Settings(io_timeout_sec=0.05), delay=1.0)
        return detector, history, await detector.detect_and_create_alerts("agent-1")

    detector, history, summaries = asyncio.run(scenario())

    assert summaries == []
    assert history.records == []
    assert detector.stats()["store_failures"] == 1


def test_store_error_fails_closed(make_window):
    async def scenario():
        detector = ConfluenceDetector(
            FakeWindows(make_window, RISING),
            FakeConfigurations(error=StoreUnavailableError("database is locked")),
            FakeHistory(),
        )
        return detector, await detector.detect_and_create_alerts("agent-1")

    detector, summaries = asyncio.run(scenario())

    assert summaries == []
    assert detector.stats()["store_failures"] == 1


def test_each_metric_type_uses_its_own_window(make_window):
    values = {
        MetricType.CPU: [40.0, 42.0, 41.0] * 7,
        MetricType.MEMORY: [float(v) for v in range(50, 65)],
    }

    async def scenario():
        detector, history = _detector(
            make_window,
            values=values,
            configurations=[_config(1), _config(2, metric_type="memory")],
        )
        return history, await detector.detect_and_create_alerts("agent-1")

    history, summaries = asyncio.run(scenario())

    assert [s.id for s in summaries] == [1]
    assert history.records[0].configuration_id == 2
    assert history.records[0].metric_type == MetricType.MEMORY


def test_calculate_indicators_uses_effective_resolution(make_window):
    async def scenario():
        detector, _ = _detector(make_window, resolution=Resolution.MIN_15)
        indicators = await detector.calculate_indicators("agent-1", MetricType.CPU)
        return detector, indicators

    detector, indicators = asyncio.run(scenario())

    assert indicators.resolution == Resolution.MIN_15
    assert detector.windows.requests[0][1] == Resolution.MIN_15
    assert detector.windows.requests[0][2] == 50


def test_silent_configuration_is_not_streamed(make_window):
    async def scenario():
        detector, _ = _detector(make_window, configurations=[_config(notify_websocket=False)])
        summaries = await detector.detect_and_create_alerts("agent-1")
        return summaries, await detector.get_event(timeout=0.05)

    summaries, event = asyncio.run(scenario())

    assert len(summaries) == 1
    assert event is None


def test_failing_callback_does_not_stop_detection(make_window):
    def explode(record):
        raise RuntimeError("listener down")

    async def scenario():
        detector, _ = _detector(make_window)
        detector.on_alert(explode)
        return await detector.detect_and_create_alerts("agent-1")

    assert len(asyncio.run(scenario())) == 1


def test_event_queue_drops_oldest_without_subscriber(make_window):
    async def scenario():
        detector = ConfluenceDetector(
            FakeWindows(make_window, RISING),
            FakeConfigurations([_config(i) for i in range(1, 6)]),
            FakeHistory(),
            history_size=3,
        )
        summaries = await detector.detect_and_create_alerts("agent-1")
        stats = detector.stats()
        events = [await detector.get_event(timeout=0) for _ in range(4)]
        return summaries, stats, events

    summaries, stats, events = asyncio.run(scenario())

    assert len(summaries) == 5
    assert stats["queue_size"] == 3
    assert stats["events_dropped"] == 2
    assert [e.configuration_id for e in events[:3]] == [3, 4, 5]
    assert events[3] is None


def test_zero_timeout_polls_instead_of_waiting(make_window):
    async def scenario():
        detector, _ = _detector(make_window)
        empty = await asyncio.wait_for(detector.get_event(timeout=0), 1.0)
        await detector.detect_and_create_alerts("agent-1")
        return empty, await detector.get_event(timeout=0)

    empty, event = asyncio.run(scenario())

    assert empty is None
    assert event.configuration_id == 1
