from __future__ import annotations

from dataclasses import dataclass

from redis import Redis


@dataclass(frozen=True)
class ClaimResult:
    acquired: bool
    existing_owner: str = ""


def report_claim_key(session_id: str) -> str:
    return f"report_claim:{session_id}"


def try_acquire_report_claim(r: Redis, *, session_id: str, owner: str, ttl_seconds: int) -> ClaimResult:
    """
    Atomically take the send lease for one session's report.

    Only one invocation holds the lease at a time; it expires on its own so a crashed
    invocation cannot block delivery forever.
    """
    key = report_claim_key(session_id)
    # Set with NX (only if not exists) and EX (expiry in seconds)
    ok = r.set(key, owner, nx=True, ex=ttl_seconds)
    if ok:
        return ClaimResult(acquired=True)
    existing = r.get(key) or ""
    return ClaimResult(acquired=False, existing_owner=existing)


def release_report_claim(r: Redis, *, session_id: str, owner: str) -> None:
    # Only the holder releases; an expired-then-retaken lease belongs to someone else.
    key = report_claim_key(session_id)
    if (r.get(key) or "") == owner:
        r.delete(key)
