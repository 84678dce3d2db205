"""Tests for the sync service — permissions, concurrency, degradation."""

from __future__ import annotations

import asyncio
import dataclasses
from datetime import date, datetime

import pytest

from src.vitalsync.base import (
    AggregationKind,
    MetricType,
    PermissionDeniedError,
    SliceSize,
    SourceUnavailableError,
    SummaryRecord,
)
from src.vitalsync.config_loader import FetchConfig, SyncConfig
from src.vitalsync.sync.service import SyncStatus, VitalsSyncService
from src.vitalsync.tests.conftest import (
    TEST_WINDOW,
    FakeAdapter,
    day_bucket,
    hour_bucket,
    sample,
)


class TestSyncRange:
    @pytest.mark.asyncio
    async def test_sparse_data_is_gap_filled(
        self, sync_config: SyncConfig, three_day_adapter: FakeAdapter
    ) -> None:
        service = VitalsSyncService(three_day_adapter, sync_config)
        result = await service.sync_range(TEST_WINDOW)

        assert [r.date for r in result.daily] == [
            date(2024, 1, 1),
            date(2024, 1, 2),
            date(2024, 1, 3),
        ]
        assert [r.steps for r in result.daily] == [1000, 0, 500]
        assert result.summary.steps == 1500
        assert result.hourly is None

    @pytest.mark.asyncio
    async def test_day_with_data_only_on_day_two(self, sync_config: SyncConfig) -> None:
        adapter = FakeAdapter(
            grouped={
                MetricType.STEPS: [day_bucket(date(2024, 1, 2), MetricType.STEPS, 4321)],
                MetricType.HEART_RATE: [
                    day_bucket(date(2024, 1, 2), MetricType.HEART_RATE, 68, AggregationKind.AVERAGE)
                ],
            }
        )
        result = await VitalsSyncService(adapter, sync_config).sync_range(TEST_WINDOW)

        first, second, third = result.daily
        assert first.steps == 0 and third.steps == 0
        assert first.average_heart_rate is None and third.average_heart_rate is None
        assert second.steps == 4321
        assert second.average_heart_rate == 68
        assert result.summary.average_heart_rate == 68

    @pytest.mark.asyncio
    async def test_summary_point_metrics_and_blood_pressure(
        self, sync_config: SyncConfig, three_day_adapter: FakeAdapter
    ) -> None:
        result = await VitalsSyncService(three_day_adapter, sync_config).sync_range(TEST_WINDOW)
        day_two = result.daily[1]
        assert day_two.calories == 2100
        assert (day_two.min_heart_rate, day_two.max_heart_rate) == (55, 140)
        assert day_two.blood_pressure_systolic == 120
        assert result.summary.blood_pressure_diastolic == 80
        assert result.summary.platform == "android"
        assert result.failed_metrics == []

    @pytest.mark.asyncio
    async def test_grouped_and_raw_fetches_planned(
        self, sync_config: SyncConfig, three_day_adapter: FakeAdapter
    ) -> None:
        await VitalsSyncService(three_day_adapter, sync_config).sync_range(TEST_WINDOW)
        shapes = {metric: shape for metric, shape, _ in three_day_adapter.calls}
        assert shapes[MetricType.STEPS] == "grouped"
        assert shapes[MetricType.BLOOD_PRESSURE] == "raw"
        assert all(
            size is SliceSize.DAY
            for _, shape, size in three_day_adapter.calls
            if shape == "grouped"
        )

    @pytest.mark.asyncio
    async def test_sleep_sessions_returned(self, sync_config: SyncConfig) -> None:
        adapter = FakeAdapter(
            raw={
                MetricType.SLEEP: [
                    sample(
                        datetime(2024, 1, 2, 1),
                        MetricType.SLEEP,
                        90,
                        unit="min",
                        end=datetime(2024, 1, 2, 2, 30),
                        stage="ASLEEP_CORE",
                    )
                ]
            }
        )
        result = await VitalsSyncService(adapter, sync_config).sync_range(TEST_WINDOW)
        assert result.daily[1].sleep_core_minutes == 90
        assert result.summary.sleep_minutes == 90
        assert len(result.sleep_sessions) == 1
        assert result.sleep_sessions[0].source == "fake"


class TestHourlyMode:
    @pytest.mark.asyncio
    async def test_hour_slices_rolled_up_to_days(self, sync_config: SyncConfig) -> None:
        day = date(2024, 1, 2)
        adapter = FakeAdapter(
            grouped={
                MetricType.STEPS: [
                    hour_bucket(day, 8, MetricType.STEPS, 300),
                    hour_bucket(day, 9, MetricType.STEPS, 400),
                ],
                MetricType.HEART_RATE: [
                    hour_bucket(day, 8, MetricType.HEART_RATE, 60, AggregationKind.AVERAGE),
                    hour_bucket(day, 9, MetricType.HEART_RATE, 71, AggregationKind.AVERAGE),
                ],
            }
        )
        result = await VitalsSyncService(adapter, sync_config).sync_range(
            TEST_WINDOW, hourly=True
        )

        assert all(size is SliceSize.HOUR for _, shape, size in adapter.calls if shape == "grouped")
        assert result.daily[1].steps == 700
        assert result.daily[1].average_heart_rate == 66
        assert result.summary.steps == 700
        assert [(p.hour, p.metric_type, p.value) for p in result.hourly] == [
            (8, "steps", 300),
            (8, "heart_rate", 60),
            (9, "steps", 400),
            (9, "heart_rate", 71),
        ]

    @pytest.mark.asyncio
    async def test_hourly_without_data_returns_empty_points(
        self, sync_config: SyncConfig
    ) -> None:
        result = await VitalsSyncService(FakeAdapter(), sync_config).sync_range(
            TEST_WINDOW, hourly=True
        )
        assert result.hourly == []
        assert len(result.daily) == 3


class TestDegradation:
    @pytest.mark.asyncio
    async def test_failed_metric_does_not_poison_others(
        self, sync_config: SyncConfig, three_day_adapter: FakeAdapter
    ) -> None:
        three_day_adapter.failures = {MetricType.HEART_RATE: RuntimeError("bridge hiccup")}
        result = await VitalsSyncService(three_day_adapter, sync_config).sync_range(TEST_WINDOW)

        assert [r.steps for r in result.daily] == [1000, 0, 500]
        assert result.daily[1].calories == 2100
        assert all(r.average_heart_rate is None for r in result.daily)
        assert result.summary.average_heart_rate is None
        assert result.failed_metrics == [MetricType.HEART_RATE]

    @pytest.mark.asyncio
    async def test_slow_fetch_times_out(
        self, sync_config: SyncConfig, three_day_adapter: FakeAdapter
    ) -> None:
        config = dataclasses.replace(
            sync_config, fetch=FetchConfig(timeout_seconds=0.05, max_concurrent=4)
        )
        three_day_adapter.delays = {MetricType.STEPS: 1.0}
        result = await VitalsSyncService(three_day_adapter, config).sync_range(TEST_WINDOW)

        assert MetricType.STEPS in result.failed_metrics
        assert result.summary.steps == 0
        assert result.daily[1].calories == 2100

    @pytest.mark.asyncio
    async def test_all_fetches_failing_raises(self, sync_config: SyncConfig) -> None:
        adapter = FakeAdapter()
        adapter.failures = {m: ConnectionError("bridge down") for m in adapter.supported_metrics()}
        service = VitalsSyncService(adapter, sync_config)

        with pytest.raises(SourceUnavailableError):
            await service.sync_range(TEST_WINDOW)
        assert service.status is SyncStatus.IDLE


class TestPermissions:
    @pytest.mark.asyncio
    async def test_denied_platform_raises(self, sync_config: SyncConfig) -> None:
        service = VitalsSyncService(FakeAdapter(denied=True), sync_config)
        with pytest.raises(PermissionDeniedError, match="SDK unavailable"):
            await service.sync_range(TEST_WINDOW)
        assert service.status is SyncStatus.IDLE

    @pytest.mark.asyncio
    async def test_missing_required_capability_raises(self, sync_config: SyncConfig) -> None:
        adapter = FakeAdapter(granted={MetricType.STEPS, MetricType.CALORIES})
        with pytest.raises(PermissionDeniedError, match="heart_rate"):
            await VitalsSyncService(adapter, sync_config).sync_range(TEST_WINDOW)
        assert adapter.calls == []

    @pytest.mark.asyncio
    async def test_optional_weight_skipped_when_not_granted(
        self, sync_config: SyncConfig
    ) -> None:
        adapter = FakeAdapter(
            raw={MetricType.WEIGHT: [sample(datetime(2024, 1, 2, 7), MetricType.WEIGHT, 70.0)]},
            granted={
                m for m in FakeAdapter.GROUPED_METRICS | FakeAdapter.RAW_METRICS
                if m is not MetricType.WEIGHT
            },
        )
        result = await VitalsSyncService(adapter, sync_config).sync_range(TEST_WINDOW)
        assert MetricType.WEIGHT not in {metric for metric, _, _ in adapter.calls}
        assert result.summary.weight_kg is None


class TestReentrancy:
    @pytest.mark.asyncio
    async def test_second_request_while_syncing_is_ignored(
        self, sync_config: SyncConfig, three_day_adapter: FakeAdapter
    ) -> None:
        three_day_adapter.delays = {MetricType.STEPS: 0.05}
        service = VitalsSyncService(three_day_adapter, sync_config)

        first = asyncio.create_task(service.sync_range(TEST_WINDOW))
        await asyncio.sleep(0.01)
        assert service.status is SyncStatus.SYNCING

        assert await service.sync_range(TEST_WINDOW) is None
        assert await service.sync_summary(TEST_WINDOW) is None

        result = await first
        assert result is not None
        assert service.status is SyncStatus.IDLE

    @pytest.mark.asyncio
    async def test_sync_summary_returns_summary(
        self, sync_config: SyncConfig, three_day_adapter: FakeAdapter
    ) -> None:
        summary = await VitalsSyncService(three_day_adapter, sync_config).sync_summary(
            TEST_WINDOW
        )
        assert isinstance(summary, SummaryRecord)
        assert summary.steps == 1500
