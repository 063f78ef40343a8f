"""Stub script generator for testing."""

from typing import Any

from ugc_engine.adapters.script.base import ScriptGenerator, ScriptResult
from ugc_engine.domain.enums import VideoStyle
from ugc_engine.domain.models import ScriptOptions
from ugc_engine.logging import get_logger

logger = get_logger(__name__)


class StubScriptGenerator(ScriptGenerator):
    """Builds a script from a fixed template without external calls."""

    @property
    def name(self) -> str:
        return "stub"

    async def generate(
        self,
        product_data: dict[str, Any],
        style: VideoStyle,
        options: ScriptOptions,
    ) -> ScriptResult:
        title = product_data.get("title", "this product")
        features = options.highlight_features or product_data.get("features") or []

        lines = [f"Okay, I have to show you {title}."]
        for feature in features[:3]:
            lines.append(f"It has {feature}.")
        if options.include_call_to_action:
            lines.append("Tap the orange cart before it's gone!")
        script = " ".join(lines)

        third = max(options.target_duration // 3, 1)
        scenes = [
            {"timestamp": f"0-{third}s", "description": "Hook", "dialogue": lines[0]},
            {
                "timestamp": f"{third}-{third * 2}s",
                "description": f"{style.value.replace('_', ' ').title()} demo",
            },
            {"timestamp": f"{third * 2}-{options.target_duration}s", "description": "CTA"},
        ]

        logger.info("stub_script_generated", title=title[:50], style=str(style))
        return ScriptResult(
            script=script,
            estimated_duration=options.target_duration,
            scenes=scenes,
        )
