"""Order state machine constants and transition guards.

Statuses progress strictly forward through the generation stages. `failed`
is reachable from every non-terminal status, and the only way out of
`failed` is an explicit retry back to `paid`.
"""

DRAFT = "draft"
PENDING_PAYMENT = "pending_payment"
PAID = "paid"
GENERATING_SCRIPT = "generating_script"
GENERATING_KEYFRAMES = "generating_keyframes"
KEYFRAMES_READY = "keyframes_ready"
GENERATING_SCENES = "generating_scenes"
STITCHING = "stitching"
COMPLETE = "complete"
FAILED = "failed"

# Order statuses in pipeline order, with operator-facing labels
ORDER_STATES = {
    DRAFT: "Order created, not yet submitted for payment",
    PENDING_PAYMENT: "Awaiting payment confirmation",
    PAID: "Payment confirmed, waiting to start generation",
    GENERATING_SCRIPT: "Writing Santa's script",
    GENERATING_KEYFRAMES: "Creating scene images",
    KEYFRAMES_READY: "Scene images ready",
    GENERATING_SCENES: "Filming scenes",
    STITCHING: "Putting the final video together",
    COMPLETE: "Video ready",
    FAILED: "Generation failed",
}

_FORWARD = {
    DRAFT: PENDING_PAYMENT,
    PENDING_PAYMENT: PAID,
    PAID: GENERATING_SCRIPT,
    GENERATING_SCRIPT: GENERATING_KEYFRAMES,
    GENERATING_KEYFRAMES: KEYFRAMES_READY,
    KEYFRAMES_READY: GENERATING_SCENES,
    GENERATING_SCENES: STITCHING,
    STITCHING: COMPLETE,
}

TERMINAL_STATES = frozenset({COMPLETE, FAILED})

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    **{src: frozenset({dst, FAILED}) for src, dst in _FORWARD.items()},
    COMPLETE: frozenset(),
    FAILED: frozenset({PAID}),
}

# Statuses the orchestrator acts on. Anything else is a no-op.
GENERATION_ELIGIBLE = frozenset({
    PAID,
    GENERATING_SCRIPT,
    GENERATING_KEYFRAMES,
    KEYFRAMES_READY,
    GENERATING_SCENES,
})

# Statuses reached only after payment (used to make payment events idempotent)
PAID_OR_LATER = frozenset({
    PAID,
    GENERATING_SCRIPT,
    GENERATING_KEYFRAMES,
    KEYFRAMES_READY,
    GENERATING_SCENES,
    STITCHING,
    COMPLETE,
    FAILED,
})

# Rough completion percentage shown to customers per status
PROGRESS_PERCENT = {
    DRAFT: 0,
    PENDING_PAYMENT: 0,
    PAID: 5,
    GENERATING_SCRIPT: 10,
    GENERATING_KEYFRAMES: 25,
    KEYFRAMES_READY: 40,
    GENERATING_SCENES: 50,
    STITCHING: 90,
    COMPLETE: 100,
    FAILED: 0,
}


def can_transition(current: str, requested: str) -> bool:
    """Return True if the transition table allows current -> requested."""
    return requested in ALLOWED_TRANSITIONS.get(current, frozenset())


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATES


def can_retry(status: str) -> bool:
    """Retry is only valid from failed."""
    return status == FAILED


def progress_percent(status: str, scenes_complete: int = 0, total_scenes: int = 0) -> int:
    """Estimate completion percentage.

    While scenes are generating the 50-90 band is interpolated by the number
    of completed scene operations.
    """
    if status == GENERATING_SCENES and total_scenes > 0:
        return 50 + int(40 * scenes_complete / total_scenes)
    return PROGRESS_PERCENT.get(status, 0)
