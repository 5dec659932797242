"""Battle voting state machine."""
