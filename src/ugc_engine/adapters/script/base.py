"""Base interface for script generation sources."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from ugc_engine.domain.enums import VideoStyle
from ugc_engine.domain.models import ScriptOptions


@dataclass
class ScriptResult:
    """Script produced for a product."""

    script: str
    estimated_duration: int
    scenes: list[dict[str, Any]] = field(default_factory=list)


class ScriptGenerationFailed(Exception):
    """Raised by a script source that could not produce a usable script."""


class ScriptGenerator(ABC):
    """Abstract base class for script sources.

    Implementations:
    - OpenAIScriptGenerator: Chat completions in JSON mode
    - StubScriptGenerator: Deterministic template for tests and local runs
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name identifier."""
        ...

    @abstractmethod
    async def generate(
        self,
        product_data: dict[str, Any],
        style: VideoStyle,
        options: ScriptOptions,
    ) -> ScriptResult:
        """Write a short-form video script for a product.

        Args:
            product_data: Scraped product snapshot (title, description, images...)
            style: Visual style the script should be written for
            options: Tone, target duration and emphasis

        Returns:
            ScriptResult with script text, estimated duration and scenes

        Raises:
            ScriptGenerationFailed: If no usable script could be produced
        """
        ...

    async def health_check(self) -> bool:
        """Check if the provider is available and healthy."""
        return True
