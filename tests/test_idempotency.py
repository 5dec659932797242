from skatebattle.services.games.idempotency import (
    already_processed,
    deadline_key,
    generate_event_id,
    record_event,
)


def test_sequence_key_makes_event_id_deterministic():
    a = generate_event_id('timeout', 'p1', 'g1', deadline_key(1700000000.5))
    b = generate_event_id('timeout', 'p1', 'g1', deadline_key(1700000000.5))
    assert a == b == 'timeout-g1-p1-deadline-1700000000.500000'


def test_event_id_without_sequence_key_is_unique():
    a = generate_event_id('trick', 'p1', 'g1')
    b = generate_event_id('trick', 'p1', 'g1')
    assert a != b
    assert a.startswith('trick-g1-p1-')


def test_already_processed_handles_empty_log():
    assert not already_processed(None, 'e1')
    assert not already_processed([], 'e1')
    assert already_processed(['e0', 'e1'], 'e1')


def test_record_event_keeps_newest_entries():
    log = []
    for i in range(5):
        log = record_event(log, f'e{i}', 3)
    assert log == ['e2', 'e3', 'e4']


def test_record_event_returns_new_list():
    original = ['e0']
    updated = record_event(original, 'e1', 10)
    assert original == ['e0']
    assert updated == ['e0', 'e1']
