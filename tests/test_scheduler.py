from skatebattle.services import scheduler


def test_run_sweeps_reports_every_sweep(flask_app):
    counts = scheduler.run_sweeps(flask_app)
    assert counts == {
        'timeouts.turn_rotations': 0,
        'timeouts.turn_forfeits': 0,
        'timeouts.disconnect_forfeits': 0,
        'expired_games.forfeited': 0,
        'stalled_games.forfeited': 0,
        'deadline_warnings.notified': 0,
        'vote_timeouts.resolved': 0,
    }


def test_failing_sweep_does_not_stop_the_others(flask_app, monkeypatch):
    def broken():
        raise RuntimeError('boom')

    sweeps = [('broken', broken)] + [s for s in scheduler.SWEEPS if s[0] == 'vote_timeouts']
    monkeypatch.setattr(scheduler, 'SWEEPS', sweeps)
    assert scheduler.run_sweeps(flask_app) == {'vote_timeouts.resolved': 0}


def test_scheduler_does_not_start_in_tests(flask_app, monkeypatch):
    started = []
    monkeypatch.setattr(scheduler.socketio, 'start_background_task', lambda *a, **k: started.append(a))
    scheduler.start_sweep_scheduler(flask_app)
    assert started == []
