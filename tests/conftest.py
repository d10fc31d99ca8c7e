from datetime import datetime, timedelta, timezone

import pytest

from core.models import MetricSample, MetricType, MetricWindow, Resolution


BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def make_window():
    def _make(values, metric_type=MetricType.CPU, resolution=Resolution.RAW, agent_id="agent-1"):
        samples = tuple(
            MetricSample(
                agent_id=agent_id,
                metric_type=metric_type,
                ts=BASE_TIME + timedelta(minutes=5 * i),
                value=float(v),
            )
            for i, v in enumerate(values)
        )
        return MetricWindow(agent_id=agent_id, metric_type=metric_type, resolution=resolution, samples=samples)

    return _make


@pytest.fixture
def storage(tmp_path):
    from db.sqlite import SQLiteStorage

    return SQLiteStorage(str(tmp_path / "confluence.db"))


@pytest.fixture
def high_cpu_config():
    from alerts.models import AlertConfiguration

    return AlertConfiguration.from_dict({
        "alert_name": "High CPU",
        "alert_type": "high_utilization",
        "rsi_thresholds": {"enabled": True},
        "stochastic_thresholds": {"enabled": True},
        "williams_r_thresholds": {"enabled": True},
    })
