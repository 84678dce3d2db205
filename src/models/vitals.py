"""Pydantic models for synced vitals: day records, summaries, sync payloads."""

from __future__ import annotations

from datetime import date, datetime

from pydantic import Field

from src.models.base import VitalSyncBase, utc_now
from src.vitalsync.base import MetricType
from src.vitalsync.windows import WindowKind


# ---------- Requests ----------

class SyncRangeRequest(VitalSyncBase):
    range: WindowKind = WindowKind.TODAY
    custom_start: str | None = None
    custom_end: str | None = None
    hourly: bool = False


# ---------- Records ----------

class DailyVitals(VitalSyncBase):
    date: date
    steps: float | None = None
    calories: float | None = None
    distance_km: float | None = None
    sleep_minutes: float | None = None
    sleep_awake_minutes: float | None = None
    sleep_rem_minutes: float | None = None
    sleep_core_minutes: float | None = None
    sleep_deep_minutes: float | None = None
    active_minutes: float | None = None
    average_heart_rate: int | None = None
    min_heart_rate: float | None = None
    max_heart_rate: float | None = None
    blood_pressure_systolic: float | None = None
    blood_pressure_diastolic: float | None = None
    min_systolic: float | None = None
    max_systolic: float | None = None
    min_diastolic: float | None = None
    max_diastolic: float | None = None
    blood_glucose_mg_per_dl: float | None = None
    body_temperature_c: float | None = None
    oxygen_saturation_percent: float | None = None
    respiratory_rate: float | None = None
    weight_kg: float | None = None


class SummaryVitals(VitalSyncBase):
    platform: str
    steps: float = 0
    calories: float = 0
    distance_km: float = 0
    sleep_minutes: float = 0
    active_minutes: float = 0
    average_heart_rate: int | None = None
    blood_pressure_systolic: float | None = None
    blood_pressure_diastolic: float | None = None
    blood_glucose_mg_per_dl: float | None = None
    body_temperature_c: float | None = None
    oxygen_saturation_percent: float | None = None
    respiratory_rate: float | None = None
    weight_kg: float | None = None


class HourlyVitalPoint(VitalSyncBase):
    date: date
    hour: int = Field(ge=0, le=23)
    metric_type: str
    value: float
    unit: str
    source: str | None = None


class SleepSessionRead(VitalSyncBase):
    start: datetime
    end: datetime
    stage: str
    duration_minutes: int
    source: str | None = None


# ---------- Responses ----------

class VitalsRangeResponse(VitalSyncBase):
    platform: str
    summary: SummaryVitals
    daily: list[DailyVitals]
    hourly: list[HourlyVitalPoint] | None = None
    sleep_sessions: list[SleepSessionRead] = Field(default_factory=list)
    failed_metrics: list[MetricType] = Field(default_factory=list)


class FlushResponse(VitalSyncBase):
    synced: int
    pending: int


# ---------- Outbound ----------

class VitalsSyncPayload(VitalSyncBase):
    """Body POSTed to the vitals API; upserted server-side on (device_id, date)."""

    device_id: str = Field(min_length=1)
    platform: str
    summary: SummaryVitals
    daily: list[DailyVitals]
    synced_at: datetime = Field(default_factory=utc_now)
    patient_profile_id: str | None = None
