"""Video status transition table.

Every status write in the system is checked against ``TRANSITIONS``. The
video store applies them as conditional updates, so a write only lands if
the row is still in the state the caller observed.
"""

from ugc_engine.domain.enums import VideoStatus
from ugc_engine.exceptions import InvalidTransitionError

TRANSITIONS: dict[VideoStatus, frozenset[VideoStatus]] = {
    VideoStatus.PENDING_SCRIPT: frozenset(
        {VideoStatus.SCRIPT_READY, VideoStatus.FAILED, VideoStatus.CANCELLED}
    ),
    VideoStatus.SCRIPT_READY: frozenset(
        {VideoStatus.SCRIPT_READY, VideoStatus.QUEUED, VideoStatus.CANCELLED}
    ),
    VideoStatus.QUEUED: frozenset(
        {VideoStatus.GENERATING, VideoStatus.FAILED, VideoStatus.CANCELLED}
    ),
    VideoStatus.GENERATING: frozenset(
        {VideoStatus.GENERATING, VideoStatus.PROCESSING, VideoStatus.FAILED}
    ),
    VideoStatus.PROCESSING: frozenset({VideoStatus.COMPLETED, VideoStatus.FAILED}),
    VideoStatus.COMPLETED: frozenset({VideoStatus.EXPIRED}),
    VideoStatus.FAILED: frozenset({VideoStatus.QUEUED}),
    VideoStatus.CANCELLED: frozenset(),
    VideoStatus.EXPIRED: frozenset(),
}

# Operation preconditions
EDITABLE = frozenset({VideoStatus.SCRIPT_READY})
CONFIRMABLE = frozenset({VideoStatus.SCRIPT_READY})
RETRYABLE = frozenset({VideoStatus.FAILED})
CANCELLABLE = frozenset(
    {VideoStatus.PENDING_SCRIPT, VideoStatus.SCRIPT_READY, VideoStatus.QUEUED}
)
DOWNLOADABLE = frozenset({VideoStatus.COMPLETED})

# A credit is held for the current attempt in these states
DEBITED = frozenset(
    {
        VideoStatus.SCRIPT_READY,
        VideoStatus.QUEUED,
        VideoStatus.GENERATING,
        VideoStatus.PROCESSING,
    }
)

# States in which a render job owns the record
RENDERING = frozenset({VideoStatus.QUEUED, VideoStatus.GENERATING, VideoStatus.PROCESSING})


def can_transition(from_status: VideoStatus, to_status: VideoStatus) -> bool:
    """Return whether ``from_status -> to_status`` is a legal move."""
    return to_status in TRANSITIONS.get(from_status, frozenset())


def check_transition(from_status: VideoStatus, to_status: VideoStatus) -> None:
    """Raise InvalidTransitionError unless the move is legal."""
    if not can_transition(from_status, to_status):
        raise InvalidTransitionError(str(from_status), str(to_status))


def is_terminal(status: VideoStatus) -> bool:
    """True for states a render job must never write to."""
    return status in {VideoStatus.COMPLETED, VideoStatus.CANCELLED, VideoStatus.EXPIRED}
