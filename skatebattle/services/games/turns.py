"""Turn rotation and letter bookkeeping.

Pure functions over the ``players`` list stored on a match. Nothing here
touches the database; callers pass plain dicts and get plain values back.
"""

from typing import List, Optional, Sequence, Tuple

SKATE = 'SKATE'


class TurnRotationError(RuntimeError):
    """Raised when rotation is asked for but no eligible player exists."""


def is_eliminated(letters: Optional[str]) -> bool:
    return len(letters or '') >= len(SKATE)


def apply_miss(letters: Optional[str]) -> str:
    """Append the next letter of SKATE."""
    current = letters or ''
    if is_eliminated(current):
        raise ValueError('player already spelled SKATE')
    return current + SKATE[len(current)]


def active_players(players: Sequence[dict]) -> List[dict]:
    return [p for p in players if not is_eliminated(p.get('letters'))]


def remaining_active_players(players: Sequence[dict]) -> int:
    return len(active_players(players))


def player_index(players: Sequence[dict], player_id: Optional[str]) -> Optional[int]:
    if player_id is None:
        return None
    for idx, p in enumerate(players):
        if p.get('id') == player_id:
            return idx
    return None


def next_active_index(players: Sequence[dict], from_index: int) -> Optional[int]:
    """Index of the next non-eliminated player after ``from_index``.

    Scans at most one full lap and never returns ``from_index`` itself, so a
    result of None means nobody else is left in the rotation.
    """
    count = len(players)
    if count == 0:
        return None
    start = from_index % count
    for step in range(1, count):
        idx = (start + step) % count
        if not is_eliminated(players[idx].get('letters')):
            return idx
    return None


def advance_after_attempt(players: Sequence[dict], current_index: int, setter_id: Optional[str]) -> Tuple[int, str]:
    """Move past the current attempter.

    Returns ``(turn_index, action)``: the next attempter with ``'attempt'``,
    or, once the rotation would come back to the setter, the next setter with
    ``'set'``.
    """
    setter_index = player_index(players, setter_id)
    if setter_index is None:
        setter_index = current_index
    nxt = next_active_index(players, current_index)
    if nxt is not None and nxt != setter_index:
        return nxt, 'attempt'
    new_setter = next_active_index(players, setter_index)
    if new_setter is None:
        raise TurnRotationError('no player left to set the next trick')
    return new_setter, 'set'
