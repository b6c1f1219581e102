"""Payment flow phase transitions enforced by the orchestrator."""

ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    "IDLE": {"OPENING_SESSION", "FAILED", "CANCELLED"},
    "OPENING_SESSION": {"GENERATING_QR", "FAILED", "CANCELLED"},
    "GENERATING_QR": {"POLLING", "FAILED", "CANCELLED"},
    "POLLING": {"COMPLETED", "FAILED", "TIMED_OUT", "CANCELLED"},
    "COMPLETED": set(),
    "FAILED": set(),
    "TIMED_OUT": set(),
    "CANCELLED": set(),
}

TERMINAL_PHASES = frozenset(phase for phase, targets in ALLOWED_TRANSITIONS.items() if not targets)


def validate_transition(current: str, new: str) -> None:
    """Raise when a transition is not allowed by the state machine."""

    if new not in ALLOWED_TRANSITIONS.get(current, set()):
        raise ValueError(f"Invalid transition: {current} -> {new}")


def is_terminal(phase: str) -> bool:
    return phase in TERMINAL_PHASES
