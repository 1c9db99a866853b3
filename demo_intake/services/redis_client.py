from __future__ import annotations

from redis import Redis


def create_redis_str(redis_url: str) -> Redis:
    """
    Redis client that decodes responses to Python strings.
    Use for our own keys (sessions, event log, report claims).
    """
    return Redis.from_url(redis_url, decode_responses=True)


def create_redis_bytes(redis_url: str) -> Redis:
    """
    Redis client that returns raw bytes.
    Required for RQ, which stores pickled binary blobs in Redis.
    """
    return Redis.from_url(redis_url, decode_responses=False)
