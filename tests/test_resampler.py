from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest

from core.engine import IngestionEngine
from core.models import MetricReport, Resolution
from core.resampler import CandleResampler, resample_reports


BASE = datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc)


def _report(minutes, cpu, memory=None, agent_id="agent-1"):
    return MetricReport(agent_id=agent_id, ts=BASE + timedelta(minutes=minutes), cpu_percent=cpu, memory_percent=memory)


def test_bucket_start_is_epoch_aligned():
    resampler = CandleResampler(Resolution.MIN_15)

    assert resampler.bucket_start(BASE + timedelta(minutes=7, seconds=23)) == BASE
    assert resampler.bucket_start(BASE + timedelta(minutes=15)) == BASE + timedelta(minutes=15)


def test_raw_resolution_has_no_resampler():
    with pytest.raises(ValueError):
        CandleResampler(Resolution.RAW)


def test_candle_completes_when_boundary_is_crossed():
    resampler = CandleResampler(Resolution.MIN_15)

    assert resampler.process(_report(0, 40.0)) is None
    assert resampler.process(_report(5, 70.0)) is None
    assert resampler.process(_report(10, 55.0)) is None
    completed = resampler.process(_report(15, 60.0))

    assert completed.ts == BASE
    assert completed.ts_end == BASE + timedelta(minutes=15)
    assert (completed.cpu.open, completed.cpu.high, completed.cpu.low, completed.cpu.close) == (40.0, 70.0, 40.0, 55.0)
    assert completed.memory is None
    assert completed.data_points == 3
    assert resampler.get_building("agent-1").ts == BASE + timedelta(minutes=15)


def test_flush_returns_building_candles():
    resampler = CandleResampler(Resolution.MIN_30)
    resampler.process(_report(0, 10.0))
    resampler.process(_report(0, 20.0, agent_id="agent-2"))

    assert len(resampler.flush("agent-1")) == 1
    assert len(resampler.flush()) == 1
    assert resampler.flush() == []


def test_batch_resample_matches_streaming():
    reports = [_report(m, float(m), memory=float(100 - m)) for m in range(0, 60, 5)]

    streamed = CandleResampler(Resolution.MIN_15).process_batch(reports)
    batched = resample_reports(reports, Resolution.MIN_15)

    # the last bucket is still building in the streaming resampler
    assert len(batched) == len(streamed) + 1
    for live, batch in zip(streamed, batched):
        assert live.ts == batch.ts
        assert live.cpu == batch.cpu
        assert live.memory == batch.memory
        assert live.data_points == batch.data_points


def test_batch_resample_drops_empty_buckets():
    reports = [_report(0, 10.0), _report(5, 12.0), _report(50, 30.0)]

    candles = resample_reports(reports, Resolution.MIN_15)

    assert [c.ts for c in candles] == [BASE, BASE + timedelta(minutes=45)]
    assert candles[1].cpu.close == 30.0


def test_engine_persists_reports_and_completed_candles(storage):
    engine = IngestionEngine(storage=storage, resolutions=[Resolution.MIN_15])

    for m in range(0, 20, 5):
        engine.ingest(_report(m, float(m)))

    assert len(storage.get_metrics_df("agent-1")) == 4
    candles = storage.get_candles_df("agent-1", Resolution.MIN_15)
    assert list(candles["cpu_close"]) == [10.0]
    assert engine.get_latest("agent-1").cpu_percent == 15.0

    assert engine.flush() == 1
    assert len(storage.get_candles_df("agent-1", Resolution.MIN_15)) == 2
    assert engine.stats()["candles_created"] == 2


def test_engine_backfill_is_idempotent_for_candles(storage):
    engine = IngestionEngine(storage=storage)
    reports = [_report(m, 50.0) for m in range(0, 120, 5)]

    first = engine.backfill("agent-1", reports)
    engine.backfill("agent-1", reports)

    assert first.count == 24
    assert first.candles > 0
    assert len(storage.get_candles_df("agent-1", Resolution.HOUR_1)) == 2
    assert engine.stats()["reports_backfilled"] == 48


def test_engine_callback_failure_is_contained(storage):
    engine = IngestionEngine(storage=storage)
    seen = []

    def explode(report):
        raise RuntimeError("boom")

    engine.on_report(explode)
    engine.on_report(seen.append)
    engine.ingest(_report(0, 10.0))

    assert len(seen) == 1


def test_engine_ingest_batch_orders_reports(storage):
    engine = IngestionEngine(storage=storage, resolutions=[Resolution.MIN_15])
    reports = [_report(m, float(m)) for m in (15, 0, 10, 5)]

    result = engine.ingest_batch(reports)

    assert result.success
    assert result.count == 4
    assert result.candles == 1
    assert result.agents == ["agent-1"]
    assert list(storage.get_candles_df("agent-1", Resolution.MIN_15)["cpu_close"]) == [10.0]


def test_live_candle_merges_into_backfilled_bucket(storage):
    engine = IngestionEngine(storage=storage, resolutions=[Resolution.MIN_15])
    engine.backfill("agent-1", [_report(0, 10.0), _report(5, 90.0), _report(10, 20.0)])

    engine.ingest(_report(12, 30.0))
    engine.ingest(_report(16, 40.0))

    candles = storage.get_candles_df("agent-1", Resolution.MIN_15)
    merged = candles.iloc[0]
    assert len(candles) == 1
    assert (merged["cpu_open"], merged["cpu_high"], merged["cpu_low"], merged["cpu_close"]) == (10.0, 90.0, 10.0, 30.0)
    assert merged["data_points"] == 4


def test_engine_ingest_is_safe_across_threads(storage):
    engine = IngestionEngine(storage=storage, resolutions=[Resolution.MIN_15])
    reports = [_report(m, 50.0, agent_id=f"agent-{m % 4}") for m in range(40)]

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(engine.ingest, reports))

    assert engine.stats()["reports_ingested"] == 40
    assert sum(len(storage.get_metrics_df(f"agent-{i}")) for i in range(4)) == 40
