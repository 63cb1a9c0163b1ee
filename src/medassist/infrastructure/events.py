from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict, Optional

import redis


logger = logging.getLogger("medassist.events")


class _RedisPublisher:
    def __init__(self, url: str) -> None:
        self._url = url
        self._client: Optional[redis.Redis] = None
        self._connect()

    def _connect(self) -> None:
        try:
            self._client = redis.Redis.from_url(self._url, socket_timeout=0.5)
            self._client.ping()
        except redis.RedisError as exc:
            logger.debug("event_publisher_unavailable", extra={"err": str(exc)})
            self._client = None

    def publish(self, channel: str, payload: Dict[str, Any]) -> bool:
        if not self._client:
            self._connect()
        if not self._client:
            return False
        try:
            self._client.publish(channel, json.dumps(payload, default=str))
            return True
        except redis.RedisError as exc:
            logger.debug("event_publish_failed", extra={"channel": channel, "err": str(exc)})
            self._client = None
            return False


_publisher: Optional[_RedisPublisher] = None


def _get_publisher() -> Optional[_RedisPublisher]:
    global _publisher
    if _publisher is not None:
        return _publisher
    url = os.getenv("REDIS_URL")
    if not url:
        return None
    _publisher = _RedisPublisher(url)
    return _publisher


def publish_event(event_type: str, payload: Dict[str, Any]) -> bool:
    publisher = _get_publisher()
    if not publisher:
        return False
    channel = f"medassist.events.{event_type}"
    return publisher.publish(channel, payload)


def reset_publisher() -> None:
    global _publisher
    _publisher = None
