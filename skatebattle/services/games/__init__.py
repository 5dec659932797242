"""Match domain services: turn engine, idempotency, state machine and sweeps.

This package contains the match logic imported by HTTP routes, socket
handlers and the sweep scheduler, keeping transport concerns separated
from core game mechanics.
"""
