from flask import current_app
from typing import Any, Dict, Iterable, Optional

from skatebattle import socketio


def user_room(user_id: str) -> str:
    return f"user:{user_id}"


def notify(user_id: Optional[str], kind: str, payload: Optional[Dict[str, Any]] = None) -> None:
    """Best-effort delivery of a user-facing event.

    Called after the owning transaction has committed. Delivery failures are
    logged and dropped; they never reach the caller.
    """
    if not user_id:
        return
    message = {'kind': kind, 'payload': payload or {}}
    try:
        socketio.emit('notification', message, to=user_room(user_id), namespace='/ws')
    except Exception:
        current_app.logger.warning(f"[notify-failed] user={user_id} kind={kind}", exc_info=True)


def notify_all(user_ids: Iterable[Optional[str]], kind: str, payload: Optional[Dict[str, Any]] = None) -> None:
    for user_id in user_ids:
        notify(user_id, kind, payload)
