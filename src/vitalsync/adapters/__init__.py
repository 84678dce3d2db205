"""Platform adapters for VitalSync.

Each adapter implements the SourceAdapter ABC and handles:
- Permission checks against the platform's health store
- Fetching grouped buckets and/or raw samples per metric
- Normalizing platform-specific JSON into canonical readings

Available adapters:
    HealthConnectAdapter — Android Health Connect (grouped + raw)
    AppleHealthAdapter   — Apple HealthKit (raw samples only)
"""

from src.vitalsync.adapters.apple_health import AppleHealthAdapter
from src.vitalsync.adapters.health_connect import HealthConnectAdapter

__all__ = [
    "AppleHealthAdapter",
    "HealthConnectAdapter",
]

# Registry: source_id → adapter class
ADAPTER_REGISTRY: dict[str, type] = {
    "health_connect": HealthConnectAdapter,
    "apple_health": AppleHealthAdapter,
}


def get_adapter(source_id: str) -> "type":
    """Return the adapter class for a given source slug.

    Args:
        source_id: 'health_connect' or 'apple_health'.

    Returns:
        The adapter class (not an instance).

    Raises:
        KeyError: If the source_id is not registered.
    """
    if source_id not in ADAPTER_REGISTRY:
        raise KeyError(
            f"No adapter registered for source '{source_id}'. "
            f"Available: {list(ADAPTER_REGISTRY)}"
        )
    return ADAPTER_REGISTRY[source_id]
