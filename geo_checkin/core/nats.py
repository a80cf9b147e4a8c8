from __future__ import annotations
import json
import logging
from typing import Sequence
from nats.aio.client import Client as NATS
from .config import get_settings

logger = logging.getLogger(__name__)

_settings = get_settings()
_nats = NATS()

async def nats_connect():
    if not _nats.is_connected:
        servers: Sequence[str] = [u.strip() for u in _settings.nats_urls.split(",") if u.strip()]
        await _nats.connect(servers=servers)

async def nats_close():
    if _nats.is_connected:
        await _nats.drain()

async def publish_checkin(evt: dict):
    """
    evt = {
      "event_id": str,
      "user_id": str,
      "checked_in_at": iso8601,
      "distance_m": float,
      "idempotency_key": "event_id:user_id"
    }
    """
    await nats_connect()
    await _nats.publish(_settings.nats_subject_checkin, json.dumps(evt).encode("utf-8"))
    logger.debug(f"Published {_settings.nats_subject_checkin} for {evt.get('idempotency_key')}")
