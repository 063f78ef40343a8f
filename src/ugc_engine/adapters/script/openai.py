"""OpenAI-backed script generator."""

import json
from typing import Any

import httpx

from ugc_engine.adapters.script.base import (
    ScriptGenerationFailed,
    ScriptGenerator,
    ScriptResult,
)
from ugc_engine.config import settings
from ugc_engine.domain.enums import VideoStyle
from ugc_engine.domain.models import ScriptOptions
from ugc_engine.logging import get_logger

logger = get_logger(__name__)

SYSTEM_PROMPT = """You write short-form UGC video scripts for TikTok Shop products.

Rules:
- Output valid JSON only, no markdown.
- Never include prices or URLs.
- Never invent features that are not in the product data.
- Sound like a real creator: casual, authentic, not corporate.
- Open with a hook in the first 3 seconds.

Return exactly:
{
  "script": "the full spoken script",
  "estimatedDuration": <seconds as integer>,
  "scenes": [
    {"timestamp": "0-3s", "description": "what is on screen", "dialogue": "spoken line"}
  ]
}"""

STYLE_DIRECTIONS = {
    VideoStyle.PRODUCT_SHOWCASE: "Focus on the product itself: close-ups, rotation, features in use.",
    VideoStyle.TALKING_HEAD: "A creator speaks to camera and holds the product, like a review.",
    VideoStyle.LIFESTYLE: "Show the product in everyday life, solving a real problem.",
}


class OpenAIScriptGenerator(ScriptGenerator):
    """Generates scripts with the OpenAI chat completions API in JSON mode."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 60.0,
    ) -> None:
        self.api_key = api_key or settings.openai_api_key
        self.model = model or settings.openai_model
        self.base_url = base_url
        self.timeout = timeout

        if not self.api_key:
            logger.warning("OpenAI API key not configured")

    @property
    def name(self) -> str:
        return f"openai:{self.model}"

    def build_user_prompt(
        self,
        product_data: dict[str, Any],
        style: VideoStyle,
        options: ScriptOptions,
    ) -> str:
        """Render the product snapshot and options into the user message."""
        lines = [
            f"Product: {product_data.get('title', '')}",
            f"Description: {product_data.get('description', '')}",
        ]
        features = options.highlight_features or product_data.get("features") or []
        if features:
            lines.append("Features: " + "; ".join(features))
        if product_data.get("rating"):
            lines.append(f"Rating: {product_data['rating']}")
        for review in (product_data.get("reviews") or [])[:3]:
            text = review.get("text") if isinstance(review, dict) else str(review)
            if text:
                lines.append(f"Review: {text}")

        lines.append("")
        lines.append(f"Style: {STYLE_DIRECTIONS[style]}")
        lines.append(f"Tone: {options.tone.value}")
        lines.append(f"Target duration: {options.target_duration} seconds")
        if options.include_call_to_action:
            lines.append("End with a call to action pointing at the shopping cart.")
        else:
            lines.append("Do not include a call to action.")
        return "\n".join(lines)

    async def generate(
        self,
        product_data: dict[str, Any],
        style: VideoStyle,
        options: ScriptOptions,
    ) -> ScriptResult:
        if not self.api_key:
            raise ScriptGenerationFailed("OpenAI API key not configured")

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": self.build_user_prompt(product_data, style, options),
                },
            ],
            "temperature": 0.8,
            "max_tokens": 1500,
            "response_format": {"type": "json_object"},
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.base_url}/chat/completions",
                    headers=headers,
                    json=payload,
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as e:
            logger.error("openai_script_request_failed", error=str(e))
            raise ScriptGenerationFailed(f"OpenAI request failed: {e}") from e

        try:
            content = json.loads(data["choices"][0]["message"]["content"])
            script = content["script"].strip()
        except (KeyError, IndexError, TypeError, ValueError, AttributeError) as e:
            logger.error("openai_script_unparseable", error=str(e))
            raise ScriptGenerationFailed("OpenAI returned an unusable script") from e
        if not script:
            raise ScriptGenerationFailed("OpenAI returned an empty script")

        usage = data.get("usage", {})
        logger.info(
            "openai_script_generated",
            model=self.model,
            tokens_used=usage.get("total_tokens", 0),
            script_length=len(script),
        )
        return ScriptResult(
            script=script,
            estimated_duration=int(content.get("estimatedDuration") or options.target_duration),
            scenes=list(content.get("scenes") or []),
        )

    async def health_check(self) -> bool:
        """Check if OpenAI API is accessible."""
        if not self.api_key:
            return False

        try:
            headers = {"Authorization": f"Bearer {self.api_key}"}
            async with httpx.AsyncClient(timeout=10.0) as client:
                response = await client.get(f"{self.base_url}/models", headers=headers)
                return response.status_code == 200
        except httpx.HTTPError as e:
            logger.error("openai_health_check_failed", error=str(e))
            return False
