"""Apple HealthKit adapter for VitalSync.

HealthKit has no server-side API and no aggregate-by-duration query that
the companion app exposes, so every metric is read as raw samples through
the app's local HTTP bridge:

    POST /healthkit/init           → request authorization
    POST /healthkit/samples        → sample query for one type
    GET  /healthkit/latest-weight  → most recent body mass, any date

HealthKit never discloses which read types the user declined; a successful
init is reported as every metric being readable.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from src.vitalsync.base import (
    MetricBucket,
    MetricSample,
    MetricType,
    PermissionResult,
    SliceSize,
    SourceAdapter,
    round_half_up,
)
from src.vitalsync.windows import TimeWindow

logger = logging.getLogger("vitalsync.adapters.apple_health")

_DEFAULT_BRIDGE_URL = "http://localhost:8765"

# MetricType → (HealthKit sample query, unit the values come back in)
_SAMPLE_TYPES: dict[MetricType, tuple[str, str]] = {
    MetricType.STEPS: ("DailyStepCountSamples", "count"),
    MetricType.CALORIES: ("ActiveEnergyBurned", "kcal"),
    MetricType.DISTANCE: ("DailyDistanceWalkingRunningSamples", "m"),
    MetricType.ACTIVE_MINUTES: ("AppleExerciseTime", "min"),
    MetricType.HEART_RATE: ("HeartRateSamples", "bpm"),
    MetricType.SLEEP: ("SleepSamples", "min"),
    MetricType.BLOOD_PRESSURE: ("BloodPressureSamples", "mmHg"),
    MetricType.BLOOD_GLUCOSE: ("BloodGlucoseSamples", "mg/dL"),
    MetricType.BODY_TEMPERATURE: ("BodyTemperatureSamples", "degC"),
    MetricType.OXYGEN_SATURATION: ("OxygenSaturationSamples", "%"),
    MetricType.RESPIRATORY_RATE: ("RespiratoryRateSamples", "breaths/min"),
}


class AppleHealthAdapter(SourceAdapter):
    """Adapter for Apple HealthKit through the companion bridge."""

    SOURCE_ID = "apple_health"
    DISPLAY_NAME = "Apple Health"
    PLATFORM = "ios"

    RAW_METRICS = frozenset(_SAMPLE_TYPES) | {MetricType.WEIGHT}

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the Apple Health adapter.

        Args:
            base_url:    Bridge root URL.
            token:       Optional bearer token the bridge expects.
            http_client: Optional pre-configured httpx client (for testing).
        """
        self._base_url = (base_url or _DEFAULT_BRIDGE_URL).rstrip("/")
        self._token = token or ""
        self._http_client = http_client

    async def check_permissions(self) -> PermissionResult:
        data = await self._request("POST", "/healthkit/init")
        error = (data or {}).get("error")
        if error:
            return PermissionResult(
                granted=False,
                platform=self.PLATFORM,
                details=[f"HealthKit authorization failed: {error}"],
            )
        return PermissionResult(
            granted=True,
            platform=self.PLATFORM,
            details=["Permissions granted or already authorized"],
            granted_capabilities=frozenset(self.supported_metrics()),
        )

    async def fetch_grouped(
        self, metric: MetricType, window: TimeWindow, slice_size: SliceSize
    ) -> list[MetricBucket]:
        raise NotImplementedError("HealthKit metrics are only available as raw samples")

    async def fetch_raw(
        self, metric: MetricType, window: TimeWindow
    ) -> list[MetricSample]:
        if metric is MetricType.WEIGHT:
            return await self._latest_weight()
        if metric not in _SAMPLE_TYPES:
            raise ValueError(f"{metric.value} is not available from HealthKit")

        sample_type, unit = _SAMPLE_TYPES[metric]
        data = await self._request(
            "POST",
            "/healthkit/samples",
            json={
                "type": sample_type,
                "startDate": window.start.isoformat(),
                "endDate": window.end.isoformat(),
            },
        )
        items = data if isinstance(data, list) else list((data or {}).get("samples") or [])

        samples = []
        for item in items:
            sample = self._normalize_sample(metric, unit, item)
            if sample is not None:
                samples.append(sample)
        logger.debug("HealthKit %s: %d samples", metric.value, len(samples))
        return samples

    # ------------------------------------------------------------------
    # Normalization
    # ------------------------------------------------------------------

    def _normalize_sample(self, metric: MetricType, unit: str, item: dict) -> MetricSample | None:
        start = self._parse_iso_datetime(item.get("startDate"))
        if start is None:
            return None
        end = self._parse_iso_datetime(item.get("endDate"))
        source = item.get("sourceName") or self.SOURCE_ID

        if metric is MetricType.SLEEP:
            if end is None:
                return None
            minutes = round_half_up((end - start).total_seconds() / 60)
            return MetricSample(
                timestamp=start,
                metric_type=metric,
                value=minutes,
                unit="min",
                end=end,
                stage=str(item.get("value") or ""),
                source=source,
            )

        if metric is MetricType.BLOOD_PRESSURE:
            systolic = self._safe_float(item.get("bloodPressureSystolicValue"))
            if systolic is None:
                return None
            return MetricSample(
                timestamp=start,
                metric_type=metric,
                value=systolic,
                unit=unit,
                secondary_value=self._safe_float(item.get("bloodPressureDiastolicValue")),
                source=source,
            )

        value = self._safe_float(item.get("value"))
        if value is None:
            return None
        if metric is MetricType.OXYGEN_SATURATION and value <= 1.0:
            # HealthKit reports SpO2 as a fraction (0.97).
            unit = "fraction"
        return MetricSample(
            timestamp=start,
            metric_type=metric,
            value=value,
            unit=unit,
            end=end,
            source=source,
        )

    async def _latest_weight(self) -> list[MetricSample]:
        """Most recent body mass regardless of the window, in pounds."""
        data = await self._request("GET", "/healthkit/latest-weight", params={"unit": "pound"})
        value = self._safe_float((data or {}).get("value"))
        timestamp = self._parse_iso_datetime((data or {}).get("startDate"))
        if value is None or timestamp is None:
            logger.debug("HealthKit has no weight sample")
            return []
        return [
            MetricSample(
                timestamp=timestamp,
                metric_type=MetricType.WEIGHT,
                value=value,
                unit="lb",
                source=(data or {}).get("sourceName") or self.SOURCE_ID,
            )
        ]

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _build_headers(self) -> dict:
        headers = {"Accept": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        json: dict | None = None,
        params: dict | None = None,
    ) -> Any:
        """Call the bridge and return the decoded JSON body.

        Raises:
            httpx.HTTPStatusError: On non-2xx responses.
        """
        url = f"{self._base_url}{path}"
        headers = self._build_headers()

        if self._http_client:
            response = await self._http_client.request(
                method, url, json=json, params=params, headers=headers
            )
        else:
            async with httpx.AsyncClient() as client:
                response = await client.request(
                    method, url, json=json, params=params, headers=headers
                )

        response.raise_for_status()
        return response.json()
