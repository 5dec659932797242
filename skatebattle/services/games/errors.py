"""User-facing error messages returned by the state machines."""

GAME_NOT_FOUND = 'Game not found'
BATTLE_NOT_FOUND = 'Battle not found'

PLAYER_NOT_IN_GAME = 'Player not in game'
NOT_A_PARTICIPANT = 'Not a participant'
ALREADY_IN_GAME = 'Already in game'

GAME_FULL = 'Game is full'
GAME_ALREADY_STARTED = 'Game has already started'
GAME_ALREADY_COMPLETED = 'Game already completed'

NOT_YOUR_TURN = 'Not your turn'
GAME_NOT_ACTIVE = 'Game is not active'
PASS_ONLY_DURING_ATTEMPT = 'Can only pass during attempt phase'

VOTING_DEADLINE_PASSED = 'Voting deadline has passed'
VOTING_NOT_ACTIVE = 'Voting is not active'

NOT_FOUND_ERRORS = frozenset({GAME_NOT_FOUND, BATTLE_NOT_FOUND})


def failed_to(operation: str) -> str:
    """Generic infrastructure failure message, never the underlying error."""
    return f'Failed to {operation}'
