"""Video render adapters."""

from ugc_engine.adapters.render.base import (
    RenderJobRequest,
    RenderProvider,
    RenderProviderError,
    RenderStatus,
    TaskIdFound,
    TaskIdMissing,
    parse_task_id,
)
from ugc_engine.adapters.render.kie import KieRenderProvider
from ugc_engine.adapters.render.stub import StubRenderProvider

__all__ = [
    "KieRenderProvider",
    "RenderJobRequest",
    "RenderProvider",
    "RenderProviderError",
    "RenderStatus",
    "StubRenderProvider",
    "TaskIdFound",
    "TaskIdMissing",
    "parse_task_id",
]
