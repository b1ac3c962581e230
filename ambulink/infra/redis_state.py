from __future__ import annotations

import json
import logging
import os
from functools import lru_cache

from redis import Redis

from ambulink.domain.models import EventEnvelope

logger = logging.getLogger(__name__)

REDIS_URL = os.getenv("REDIS_URL", "redis://redis:6379/0")
REDIS_CHANNEL_PREFIX = os.getenv("REDIS_CHANNEL_PREFIX", "ambulink")
EVENT_FANOUT_REDIS = os.getenv("EVENT_FANOUT_REDIS", "false").lower() == "true"


@lru_cache(maxsize=1)
def get_redis() -> Redis:
    return Redis.from_url(REDIS_URL, decode_responses=True)


def check_redis_ready() -> bool:
    try:
        return bool(get_redis().ping())
    except Exception:
        return False


def organization_channel(organization_id: str) -> str:
    return f"{REDIS_CHANNEL_PREFIX}:org:{organization_id}"


def fanout_channels(event: EventEnvelope) -> list[str]:
    """Channels for every organization named by the event."""
    org_ids = [event.organization_id]
    for key in ("destination_organization_id", "vehicle_organization_id", "fleet_id", "hospital_id"):
        value = event.payload.get(key)
        if isinstance(value, str) and value not in org_ids:
            org_ids.append(value)
    return [organization_channel(org_id) for org_id in org_ids]


def publish_realtime(event: EventEnvelope) -> None:
    message = json.dumps(
        {
            "event_id": event.event_id,
            "event_type": event.event_type,
            "ts": event.ts.isoformat(),
            "payload": event.payload,
        },
        default=str,
    )
    try:
        client = get_redis()
        for channel in fanout_channels(event):
            client.publish(channel, message)
    except Exception:
        logger.warning("realtime fan-out failed for %s", event.event_type, exc_info=True)
