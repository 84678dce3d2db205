"""Android Health Connect adapter for VitalSync.

Health Connect is an on-device store with no server API.  The companion app
exposes it over a small local HTTP bridge that mirrors the SDK calls:

    GET  /health-connect/permissions            → granted read permissions
    POST /health-connect/aggregate-by-duration  → aggregateGroupByDuration()
    POST /health-connect/read-records           → readRecords()

Cumulative metrics, heart rate and weight are delivered as platform buckets;
instantaneous vitals (blood pressure, glucose, temperature, SpO2,
respiratory rate) only exist as raw records.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from src.vitalsync.base import (
    AggregationKind,
    MetricBucket,
    MetricSample,
    MetricType,
    PermissionResult,
    SliceSize,
    SourceAdapter,
    round_half_up,
)
from src.vitalsync.config_loader import SyncConfig, get_sync_config
from src.vitalsync.windows import TimeWindow

logger = logging.getLogger("vitalsync.adapters.health_connect")

_DEFAULT_BRIDGE_URL = "http://localhost:8765"

# MetricType → Health Connect record type
_RECORD_TYPES: dict[MetricType, str] = {
    MetricType.STEPS: "Steps",
    MetricType.CALORIES: "TotalCaloriesBurned",
    MetricType.DISTANCE: "Distance",
    MetricType.ACTIVE_MINUTES: "ExerciseSession",
    MetricType.HEART_RATE: "HeartRate",
    MetricType.SLEEP: "SleepSession",
    MetricType.WEIGHT: "Weight",
    MetricType.BLOOD_PRESSURE: "BloodPressure",
    MetricType.BLOOD_GLUCOSE: "BloodGlucose",
    MetricType.BODY_TEMPERATURE: "BodyTemperature",
    MetricType.OXYGEN_SATURATION: "OxygenSaturation",
    MetricType.RESPIRATORY_RATE: "RespiratoryRate",
}

_SLICERS: dict[SliceSize, str] = {
    SliceSize.DAY: "DAYS",
    SliceSize.HOUR: "HOURS",
}

# Metric → [(result key, nested unit key, aggregation, unit, divisor)]
# Durations arrive in seconds and are rounded to whole minutes.
_AGGREGATE_KEYS: dict[MetricType, list[tuple[str, str | None, AggregationKind, str, float]]] = {
    MetricType.STEPS: [("COUNT_TOTAL", None, AggregationKind.COUNT_TOTAL, "count", 1)],
    MetricType.CALORIES: [("ENERGY_TOTAL", "inKilocalories", AggregationKind.SUM, "kcal", 1)],
    MetricType.DISTANCE: [("DISTANCE", "inKilometers", AggregationKind.SUM, "km", 1)],
    MetricType.SLEEP: [("SLEEP_DURATION_TOTAL", None, AggregationKind.SUM, "min", 60)],
    MetricType.ACTIVE_MINUTES: [
        ("EXERCISE_DURATION_TOTAL", "inSeconds", AggregationKind.SUM, "min", 60)
    ],
    MetricType.HEART_RATE: [
        ("BPM_AVG", None, AggregationKind.AVERAGE, "bpm", 1),
        ("BPM_MIN", None, AggregationKind.MIN, "bpm", 1),
        ("BPM_MAX", None, AggregationKind.MAX, "bpm", 1),
    ],
    MetricType.WEIGHT: [("WEIGHT_AVG", "inKilograms", AggregationKind.AVERAGE, "kg", 1)],
}


class HealthConnectAdapter(SourceAdapter):
    """Adapter for Android Health Connect through the companion bridge."""

    SOURCE_ID = "health_connect"
    DISPLAY_NAME = "Health Connect"
    PLATFORM = "android"

    GROUPED_METRICS = frozenset(_AGGREGATE_KEYS)
    RAW_METRICS = frozenset(
        {
            MetricType.BLOOD_PRESSURE,
            MetricType.BLOOD_GLUCOSE,
            MetricType.BODY_TEMPERATURE,
            MetricType.OXYGEN_SATURATION,
            MetricType.RESPIRATORY_RATE,
        }
    )

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        config: SyncConfig | None = None,
    ) -> None:
        """Initialize the Health Connect adapter.

        Args:
            base_url:    Bridge root URL.
            token:       Optional bearer token the bridge expects.
            http_client: Optional pre-configured httpx client (for testing).
            config:      Sync config; decides which reads are required.
        """
        self._base_url = (base_url or _DEFAULT_BRIDGE_URL).rstrip("/")
        self._token = token or ""
        self._http_client = http_client
        self._config = config or get_sync_config()

    # ------------------------------------------------------------------
    # Permissions
    # ------------------------------------------------------------------

    async def check_permissions(self) -> PermissionResult:
        """Map granted Health Connect read permissions onto metrics.

        The SDK being unavailable (not installed, needs update) is reported
        as a denied result rather than raised.
        """
        data = await self._request("GET", "/health-connect/permissions")
        if not data.get("sdkAvailable", False):
            status = data.get("sdkStatus", "unavailable")
            return PermissionResult(
                granted=False,
                platform=self.PLATFORM,
                details=[
                    f"Health Connect is not available on this device (status: {status}). "
                    "Install or update Health Connect from the Play Store."
                ],
            )

        readable = {
            item.get("recordType")
            for item in data.get("granted", [])
            if item.get("accessType", "read") == "read"
        }
        granted = frozenset(
            metric
            for metric in self.supported_metrics()
            if _RECORD_TYPES[metric] in readable
        )
        missing = sorted(
            m.value for m in self._config.permissions.required if m not in granted
        )
        details = [f"Missing required permissions: {', '.join(missing)}"] if missing else []
        if MetricType.WEIGHT not in granted:
            details.append("Weight permission not granted; weight will be skipped")
        return PermissionResult(
            granted=not missing,
            platform=self.PLATFORM,
            details=details,
            granted_capabilities=granted,
        )

    # ------------------------------------------------------------------
    # Grouped fetch
    # ------------------------------------------------------------------

    async def fetch_grouped(
        self, metric: MetricType, window: TimeWindow, slice_size: SliceSize
    ) -> list[MetricBucket]:
        if metric not in self.GROUPED_METRICS:
            raise ValueError(f"{metric.value} has no grouped Health Connect aggregate")
        data = await self._request(
            "POST",
            "/health-connect/aggregate-by-duration",
            json={
                "recordType": _RECORD_TYPES[metric],
                "timeRangeFilter": self._time_range(window),
                "timeRangeSlicer": {"duration": _SLICERS[slice_size], "length": 1},
            },
        )
        buckets: list[MetricBucket] = []
        for group in self._items(data, "buckets"):
            buckets.extend(self._normalize_bucket(metric, group))
        logger.debug(
            "Health Connect %s: %d buckets (%s slices)",
            metric.value,
            len(buckets),
            slice_size.value,
        )
        return buckets

    def _normalize_bucket(self, metric: MetricType, group: dict) -> list[MetricBucket]:
        start = self._parse_iso_datetime(group.get("startTime"))
        end = self._parse_iso_datetime(group.get("endTime"))
        if start is None or end is None:
            logger.warning("Skipping Health Connect bucket without bounds: %r", group)
            return []

        result = group.get("result") or {}
        buckets = []
        for key, nested, kind, unit, divisor in _AGGREGATE_KEYS[metric]:
            raw = result.get(key)
            if isinstance(raw, dict) and nested:
                raw = raw.get(nested)
            value = self._safe_float(raw)
            if value is None:
                continue
            if divisor != 1:
                value = round_half_up(value / divisor)
            buckets.append(
                MetricBucket(
                    period_start=start,
                    period_end=end,
                    metric_type=metric,
                    aggregation=kind,
                    value=value,
                    unit=unit,
                    source=self.SOURCE_ID,
                )
            )
        return buckets

    # ------------------------------------------------------------------
    # Raw fetch
    # ------------------------------------------------------------------

    async def fetch_raw(
        self, metric: MetricType, window: TimeWindow
    ) -> list[MetricSample]:
        if metric not in self.RAW_METRICS:
            raise ValueError(f"{metric.value} is not read as raw Health Connect records")
        data = await self._request(
            "POST",
            "/health-connect/read-records",
            json={
                "recordType": _RECORD_TYPES[metric],
                "timeRangeFilter": self._time_range(window),
            },
        )
        samples = []
        for record in self._items(data, "records"):
            sample = self._normalize_record(metric, record)
            if sample is not None:
                samples.append(sample)
        logger.debug("Health Connect %s: %d records", metric.value, len(samples))
        return samples

    def _normalize_record(self, metric: MetricType, record: dict) -> MetricSample | None:
        timestamp = self._parse_iso_datetime(record.get("time") or record.get("startTime"))
        if timestamp is None:
            return None
        source = (record.get("metadata") or {}).get("dataOrigin") or self.SOURCE_ID

        if metric is MetricType.BLOOD_PRESSURE:
            systolic = self._safe_float(
                (record.get("systolic") or {}).get("inMillimetersOfMercury")
            )
            diastolic = self._safe_float(
                (record.get("diastolic") or {}).get("inMillimetersOfMercury")
            )
            if systolic is None:
                return None
            return MetricSample(
                timestamp=timestamp,
                metric_type=metric,
                value=systolic,
                unit="mmHg",
                secondary_value=diastolic,
                source=source,
            )

        value, unit = self._instant_value(metric, record)
        if value is None:
            return None
        return MetricSample(
            timestamp=timestamp, metric_type=metric, value=value, unit=unit, source=source
        )

    def _instant_value(self, metric: MetricType, record: dict) -> tuple[float | None, str | None]:
        """Pull the value and its unit out of a single-value record."""
        if metric is MetricType.BLOOD_GLUCOSE:
            level = record.get("level") or {}
            if "inMilligramsPerDeciliter" in level:
                return self._safe_float(level["inMilligramsPerDeciliter"]), "mg/dL"
            if "inMillimolesPerLiter" in level:
                return self._safe_float(level["inMillimolesPerLiter"]), "mmol/L"
            return self._safe_float(level.get("value")), "mg/dL"

        if metric is MetricType.BODY_TEMPERATURE:
            temperature = record.get("temperature") or {}
            if "inFahrenheit" in temperature and "inCelsius" not in temperature:
                return self._safe_float(temperature["inFahrenheit"]), "degF"
            return (
                self._safe_float(temperature.get("inCelsius", temperature.get("value"))),
                "degC",
            )

        if metric is MetricType.OXYGEN_SATURATION:
            percentage = record.get("percentage")
            if isinstance(percentage, dict):
                percentage = percentage.get("value")
            return self._safe_float(percentage), "%"

        return self._safe_float(record.get("rate")), "breaths/min"

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _time_range(window: TimeWindow) -> dict:
        return {
            "operator": "between",
            "startTime": window.start.isoformat(),
            "endTime": window.end.isoformat(),
        }

    @staticmethod
    def _items(data: Any, key: str) -> list[dict]:
        """Accept either a bare JSON list or ``{key: [...]}``."""
        if isinstance(data, list):
            return data
        return list((data or {}).get(key) or [])

    def _build_headers(self) -> dict:
        headers = {"Accept": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def _request(self, method: str, path: str, json: dict | None = None) -> Any:
        """Call the bridge and return the decoded JSON body.

        Raises:
            httpx.HTTPStatusError: On non-2xx responses.
        """
        url = f"{self._base_url}{path}"
        headers = self._build_headers()

        if self._http_client:
            response = await self._http_client.request(method, url, json=json, headers=headers)
        else:
            async with httpx.AsyncClient() as client:
                response = await client.request(method, url, json=json, headers=headers)

        response.raise_for_status()
        return response.json()
