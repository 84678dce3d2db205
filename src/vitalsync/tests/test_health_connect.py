"""Tests for the Health Connect adapter — normalization of bridge responses."""

from __future__ import annotations

from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from src.vitalsync.adapters import HealthConnectAdapter, get_adapter
from src.vitalsync.base import AggregationKind, MetricType, SliceSize
from src.vitalsync.config_loader import SyncConfig
from src.vitalsync.tests.conftest import TEST_WINDOW


def _client(payload: object) -> MagicMock:
    """httpx client double whose ``request`` returns ``payload`` as JSON."""
    response = MagicMock()
    response.raise_for_status = MagicMock()
    response.json = MagicMock(return_value=payload)
    client = MagicMock()
    client.request = AsyncMock(return_value=response)
    return client


def _adapter(payload: object, sync_config: SyncConfig) -> HealthConnectAdapter:
    return HealthConnectAdapter(
        base_url="http://bridge.local/",
        token="bridge-secret",
        http_client=_client(payload),
        config=sync_config,
    )


class TestCapabilities:
    def test_registry_lookup(self) -> None:
        assert get_adapter("health_connect") is HealthConnectAdapter

    def test_unknown_source_raises(self) -> None:
        with pytest.raises(KeyError, match="garmin"):
            get_adapter("garmin")

    def test_grouped_and_raw_split(self) -> None:
        assert HealthConnectAdapter.GROUPED_METRICS >= {
            MetricType.STEPS,
            MetricType.HEART_RATE,
            MetricType.SLEEP,
            MetricType.WEIGHT,
        }
        assert MetricType.BLOOD_PRESSURE in HealthConnectAdapter.RAW_METRICS
        assert not HealthConnectAdapter.GROUPED_METRICS & HealthConnectAdapter.RAW_METRICS

    def test_platform(self, sync_config: SyncConfig) -> None:
        adapter = _adapter({}, sync_config)
        assert adapter.PLATFORM == "android"
        assert adapter.fetch_shape(MetricType.STEPS) == "grouped"
        assert adapter.fetch_shape(MetricType.BLOOD_GLUCOSE) == "raw"


class TestPermissions:
    @pytest.mark.asyncio
    async def test_granted_reads_mapped_to_metrics(
        self, sync_config: SyncConfig, health_connect_permissions_raw: dict
    ) -> None:
        adapter = _adapter(health_connect_permissions_raw, sync_config)
        result = await adapter.check_permissions()

        assert result.granted
        assert result.platform == "android"
        assert MetricType.BLOOD_PRESSURE in result.granted_capabilities
        assert MetricType.WEIGHT not in result.granted_capabilities
        assert any("Weight" in d for d in result.details)

    @pytest.mark.asyncio
    async def test_missing_required_read_denies(self, sync_config: SyncConfig) -> None:
        payload = {
            "sdkAvailable": True,
            "granted": [{"recordType": "Steps", "accessType": "read"}],
        }
        result = await _adapter(payload, sync_config).check_permissions()
        assert not result.granted
        assert "heart_rate" in result.details[0]

    @pytest.mark.asyncio
    async def test_sdk_unavailable_is_denied(self, sync_config: SyncConfig) -> None:
        result = await _adapter({"sdkAvailable": False, "sdkStatus": 1}, sync_config).check_permissions()
        assert not result.granted
        assert "not available" in result.details[0]
        assert result.granted_capabilities == frozenset()


class TestGroupedFetch:
    @pytest.mark.asyncio
    async def test_heart_rate_buckets(
        self, sync_config: SyncConfig, health_connect_heart_rate_raw: dict
    ) -> None:
        adapter = _adapter(health_connect_heart_rate_raw, sync_config)
        buckets = await adapter.fetch_grouped(MetricType.HEART_RATE, TEST_WINDOW, SliceSize.DAY)

        # Third day has an empty result and yields nothing
        assert len(buckets) == 6
        first_day = [b for b in buckets if b.period_start == datetime(2024, 1, 1)]
        kinds = {b.aggregation: b.value for b in first_day}
        assert kinds == {
            AggregationKind.AVERAGE: 68,
            AggregationKind.MIN: 52,
            AggregationKind.MAX: 151,
        }
        assert all(b.unit == "bpm" for b in buckets)

    @pytest.mark.asyncio
    async def test_request_shape(self, sync_config: SyncConfig) -> None:
        adapter = _adapter({"buckets": []}, sync_config)
        await adapter.fetch_grouped(MetricType.STEPS, TEST_WINDOW, SliceSize.HOUR)

        call = adapter._http_client.request.call_args
        method, url = call.args
        assert method == "POST"
        assert url == "http://bridge.local/health-connect/aggregate-by-duration"
        body = call.kwargs["json"]
        assert body["recordType"] == "Steps"
        assert body["timeRangeSlicer"] == {"duration": "HOURS", "length": 1}
        assert body["timeRangeFilter"]["startTime"] == "2024-01-01T00:00:00"
        assert call.kwargs["headers"]["Authorization"] == "Bearer bridge-secret"

    @pytest.mark.asyncio
    async def test_result_keys_normalized(self, sync_config: SyncConfig) -> None:
        def group(result: dict) -> dict:
            return {
                "startTime": "2024-01-02T00:00:00",
                "endTime": "2024-01-03T00:00:00",
                "result": result,
            }

        cases = [
            (MetricType.STEPS, {"COUNT_TOTAL": 8421}, 8421, AggregationKind.COUNT_TOTAL),
            (MetricType.CALORIES, {"ENERGY_TOTAL": {"inKilocalories": 2250.5}}, 2250.5, AggregationKind.SUM),
            (MetricType.DISTANCE, {"DISTANCE": {"inKilometers": 6.3}}, 6.3, AggregationKind.SUM),
            (MetricType.SLEEP, {"SLEEP_DURATION_TOTAL": 27000}, 450, AggregationKind.SUM),
            (MetricType.ACTIVE_MINUTES, {"EXERCISE_DURATION_TOTAL": {"inSeconds": 1830}}, 31, AggregationKind.SUM),
            (MetricType.WEIGHT, {"WEIGHT_AVG": {"inKilograms": 72.5}}, 72.5, AggregationKind.AVERAGE),
        ]
        for metric, result, expected, kind in cases:
            adapter = _adapter([group(result)], sync_config)
            (bucket,) = await adapter.fetch_grouped(metric, TEST_WINDOW, SliceSize.DAY)
            assert bucket.value == pytest.approx(expected), metric
            assert bucket.aggregation is kind
            assert bucket.source == "health_connect"

    @pytest.mark.asyncio
    async def test_raw_only_metric_rejected(self, sync_config: SyncConfig) -> None:
        with pytest.raises(ValueError):
            await _adapter({}, sync_config).fetch_grouped(
                MetricType.BLOOD_PRESSURE, TEST_WINDOW, SliceSize.DAY
            )


class TestRawFetch:
    @pytest.mark.asyncio
    async def test_blood_pressure_records(
        self, sync_config: SyncConfig, health_connect_blood_pressure_raw: dict
    ) -> None:
        adapter = _adapter(health_connect_blood_pressure_raw, sync_config)
        samples = await adapter.fetch_raw(MetricType.BLOOD_PRESSURE, TEST_WINDOW)

        # Record without a systolic value is dropped
        assert len(samples) == 2
        assert samples[0].value == 118
        assert samples[0].secondary_value == 76
        assert samples[0].unit == "mmHg"
        assert samples[0].source == "com.omron.connect"
        assert samples[1].timestamp == datetime(2024, 1, 2, 21, 10)

    @pytest.mark.asyncio
    async def test_instant_record_shapes(self, sync_config: SyncConfig) -> None:
        cases = [
            (MetricType.BLOOD_GLUCOSE, {"level": {"inMillimolesPerLiter": 5.4}}, 5.4, "mmol/L"),
            (MetricType.BLOOD_GLUCOSE, {"level": {"value": 104}}, 104, "mg/dL"),
            (MetricType.BODY_TEMPERATURE, {"temperature": {"inCelsius": 36.7}}, 36.7, "degC"),
            (MetricType.BODY_TEMPERATURE, {"temperature": {"inFahrenheit": 98.2}}, 98.2, "degF"),
            (MetricType.OXYGEN_SATURATION, {"percentage": {"value": 97}}, 97, "%"),
            (MetricType.OXYGEN_SATURATION, {"percentage": 95}, 95, "%"),
            (MetricType.RESPIRATORY_RATE, {"rate": 15}, 15, "breaths/min"),
        ]
        for metric, fields, expected, unit in cases:
            record = {"time": "2024-01-02T08:00:00Z", **fields}
            adapter = _adapter({"records": [record]}, sync_config)
            (reading,) = await adapter.fetch_raw(metric, TEST_WINDOW)
            assert reading.value == pytest.approx(expected)
            assert reading.unit == unit
            assert reading.timestamp.tzinfo is not None

    @pytest.mark.asyncio
    async def test_grouped_metric_rejected(self, sync_config: SyncConfig) -> None:
        with pytest.raises(ValueError):
            await _adapter({}, sync_config).fetch_raw(MetricType.STEPS, TEST_WINDOW)

    @pytest.mark.asyncio
    async def test_http_error_propagates(self, sync_config: SyncConfig) -> None:
        adapter = _adapter({}, sync_config)
        response = adapter._http_client.request.return_value
        response.raise_for_status.side_effect = httpx.HTTPStatusError(
            "boom", request=MagicMock(), response=MagicMock()
        )
        with pytest.raises(httpx.HTTPStatusError):
            await adapter.fetch_raw(MetricType.RESPIRATORY_RATE, TEST_WINDOW)
