"""Outbound delivery of sync results to the vitals API.

Each successful sync is turned into a ``VitalsSyncPayload`` and parked in an
outbox keyed by (device_id, sync date).  A later sync on the same day
replaces the pending payload, matching the server's upsert on the same key.
``flush_outbox`` pushes whatever is pending and keeps the failures for the
next attempt.

Usage::

    outbox = InMemoryOutbox()
    outbox.enqueue(build_sync_payload(result, device_id="pixel-8"))
    client = VitalsPushClient(base_url, api_token, patient_profile_id)
    await flush_outbox(outbox, client)
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone

import httpx

from src.models.vitals import DailyVitals, SummaryVitals, VitalsSyncPayload
from src.vitalsync.base import SyncRangeResult

logger = logging.getLogger("vitalsync.sync.outbox")

VITALS_PATH = "/api/v1/vitals"


def build_sync_payload(
    result: SyncRangeResult,
    device_id: str,
    *,
    synced_at: datetime | None = None,
    patient_profile_id: str | None = None,
) -> VitalsSyncPayload:
    """Build the outbound payload for one sync result."""
    return VitalsSyncPayload(
        device_id=device_id,
        platform=result.platform,
        summary=SummaryVitals.model_validate(result.summary),
        daily=[DailyVitals.model_validate(record) for record in result.daily],
        synced_at=synced_at or datetime.now(timezone.utc),
        patient_profile_id=patient_profile_id,
    )


def upsert_key(device_id: str, day: date) -> str:
    """Outbox key mirroring the server's (device_id, date) upsert."""
    return f"{device_id}:{day.isoformat()}"


class InMemoryOutbox:
    """Pending payloads, last write wins per (device_id, sync date).

    Usage::

        outbox = InMemoryOutbox()
        key = outbox.enqueue(payload)
        outbox.mark_synced([key])
    """

    def __init__(self) -> None:
        self._pending: dict[str, VitalsSyncPayload] = {}

    def enqueue(self, payload: VitalsSyncPayload) -> str:
        key = upsert_key(payload.device_id, payload.synced_at.date())
        if key in self._pending:
            logger.debug("Replacing pending payload %s", key)
        self._pending[key] = payload
        return key

    def pending(self) -> list[tuple[str, VitalsSyncPayload]]:
        return list(self._pending.items())

    def mark_synced(self, keys: list[str]) -> None:
        for key in keys:
            self._pending.pop(key, None)

    def clear(self) -> None:
        self._pending.clear()

    def __len__(self) -> int:
        return len(self._pending)


class VitalsPushClient:
    """POST sync payloads to the vitals API.

    Failures never raise: missing credentials, non-2xx responses and network
    errors are logged and reported as ``False`` so the payload stays queued.
    """

    def __init__(
        self,
        base_url: str,
        api_token: str,
        patient_profile_id: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        """Initialize the push client.

        Args:
            base_url:           API root, e.g. ``https://api.example.com``.
            api_token:          Bearer token.
            patient_profile_id: Profile the vitals belong to, when the payload
                                does not name one.
            http_client:        Optional pre-configured httpx client (for testing).
            timeout:            Request timeout in seconds.
        """
        self._base_url = base_url.rstrip("/")
        self._api_token = api_token
        self._patient_profile_id = patient_profile_id
        self._http_client = http_client
        self._timeout = timeout

    async def push(self, payload: VitalsSyncPayload) -> bool:
        profile_id = payload.patient_profile_id or self._patient_profile_id
        if not self._api_token or not profile_id:
            logger.info("Skipping vitals push: API token or patient profile not configured")
            return False

        body = payload.model_copy(update={"patient_profile_id": profile_id}).model_dump(
            mode="json", by_alias=True
        )
        try:
            response = await self._post(f"{self._base_url}{VITALS_PATH}", body)
        except httpx.HTTPError as exc:
            logger.warning("Vitals push to %s failed: %s", self._base_url, exc)
            return False

        if not response.is_success:
            logger.warning(
                "Vitals push rejected with HTTP %d: %s",
                response.status_code,
                response.text[:200],
            )
            return False

        logger.info(
            "Pushed %d days for device %s", len(payload.daily), payload.device_id
        )
        return True

    async def _post(self, url: str, body: dict) -> httpx.Response:
        headers = {
            "Authorization": f"Bearer {self._api_token}",
            "Content-Type": "application/json",
        }
        if self._http_client:
            return await self._http_client.post(url, json=body, headers=headers)
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            return await client.post(url, json=body, headers=headers)


async def flush_outbox(outbox: InMemoryOutbox, client: VitalsPushClient) -> int:
    """Push every pending payload; returns how many were delivered."""
    delivered: list[str] = []
    for key, payload in outbox.pending():
        if await client.push(payload):
            delivered.append(key)
    outbox.mark_synced(delivered)
    if outbox:
        logger.info("%d payloads remain queued after flush", len(outbox))
    return len(delivered)
