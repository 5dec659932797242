import secrets
import time
from typing import Iterable, List, Optional


def generate_event_id(kind: str, actor_id: str, record_id: str, sequence_key: Optional[str] = None) -> str:
    """Build an idempotency key for an action on a match or battle.

    With a ``sequence_key`` the id is deterministic, so two sweep passes that
    resolve the same deadline compute the same id. Without one a nonce is
    appended; callers must reuse the returned id when retrying.
    """
    if sequence_key:
        return f"{kind}-{record_id}-{actor_id}-{sequence_key}"
    return f"{kind}-{record_id}-{actor_id}-{int(time.time() * 1000)}-{secrets.token_hex(4)}"


def deadline_key(deadline: float) -> str:
    return f"deadline-{deadline:.6f}"


def already_processed(processed_ids: Optional[Iterable[str]], event_id: str) -> bool:
    return event_id in (processed_ids or ())


def record_event(processed_ids: Optional[Iterable[str]], event_id: str, limit: int) -> List[str]:
    """Return a new id log with ``event_id`` appended, oldest entries dropped past ``limit``."""
    updated = list(processed_ids or [])
    updated.append(event_id)
    if limit > 0 and len(updated) > limit:
        updated = updated[-limit:]
    return updated
