"""Base interface for video render providers."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from ugc_engine.domain.enums import RenderState

# Field paths a provider may use for the created job's id, in priority order.
TASK_ID_FIELDS: tuple[tuple[str, ...], ...] = (
    ("taskId",),
    ("task_id",),
    ("id",),
    ("jobId",),
    ("job_id",),
    ("data", "taskId"),
    ("data", "task_id"),
    ("data", "id"),
)


@dataclass
class RenderJobRequest:
    """Request for one render."""

    prompt: str
    image_url: str | None = None


@dataclass
class RenderStatus:
    """Normalized status of an external render job."""

    state: RenderState
    progress: int = 0
    result_url: str | None = None
    thumbnail_url: str | None = None
    error_message: str | None = None


@dataclass(frozen=True)
class TaskIdFound:
    task_id: str


@dataclass(frozen=True)
class TaskIdMissing:
    reason: str


def parse_task_id(payload: Any) -> TaskIdFound | TaskIdMissing:
    """Extract the created job's id from a provider response.

    Tries each path in TASK_ID_FIELDS in order and returns the first
    non-empty value.
    """
    if not isinstance(payload, dict):
        return TaskIdMissing(f"expected a JSON object, got {type(payload).__name__}")

    for path in TASK_ID_FIELDS:
        node: Any = payload
        for key in path:
            if not isinstance(node, dict):
                node = None
                break
            node = node.get(key)
        if node not in (None, ""):
            return TaskIdFound(str(node))

    return TaskIdMissing(f"no task id in response keys {sorted(payload)}")


class RenderProviderError(Exception):
    """Raised when a render provider call fails.

    ``status_code`` is the upstream HTTP status when there was one.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class RenderProvider(ABC):
    """Abstract base class for asynchronous render providers.

    Implementations:
    - KieRenderProvider: Sora 2 via Kie.ai
    - StubRenderProvider: In-memory jobs for tests and local runs
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name identifier."""
        ...

    @abstractmethod
    async def create_job(self, request: RenderJobRequest) -> str:
        """Submit a render and return the provider's job id."""
        ...

    @abstractmethod
    async def get_status(self, external_job_id: str) -> RenderStatus:
        """Fetch the current status of a submitted render."""
        ...

    @abstractmethod
    async def download(self, url: str) -> bytes:
        """Fetch a finished render into memory."""
        ...

    async def health_check(self) -> bool:
        """Check if the provider is available and healthy."""
        return True
