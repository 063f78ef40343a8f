"""Adapters for external services."""

from ugc_engine.adapters.render.base import RenderProvider
from ugc_engine.adapters.script.base import ScriptGenerator
from ugc_engine.adapters.storage.base import AssetStore

__all__ = [
    "AssetStore",
    "RenderProvider",
    "ScriptGenerator",
]
