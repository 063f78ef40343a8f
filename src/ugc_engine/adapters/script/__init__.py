"""Script generation adapters."""

from ugc_engine.adapters.script.base import (
    ScriptGenerationFailed,
    ScriptGenerator,
    ScriptResult,
)
from ugc_engine.adapters.script.openai import OpenAIScriptGenerator
from ugc_engine.adapters.script.stub import StubScriptGenerator

__all__ = [
    "OpenAIScriptGenerator",
    "ScriptGenerationFailed",
    "ScriptGenerator",
    "ScriptResult",
    "StubScriptGenerator",
]
