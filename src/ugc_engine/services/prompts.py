"""Render prompt templates per video style."""

from ugc_engine.domain.enums import VideoStyle

_REFERENCE_NOTE = (
    "IMPORTANT: The attached image is a PRODUCT REFERENCE showing what the product "
    "looks like - DO NOT display this image as the first frames. Start the video "
    "IMMEDIATELY with {opening}."
)

_MATCH_NOTE = (
    "The product shown must match the reference image exactly "
    "(colors, shape, materials, details)."
)

STYLE_VIDEO_PROMPTS: dict[VideoStyle, str] = {
    VideoStyle.PRODUCT_SHOWCASE: (
        _REFERENCE_NOTE.format(opening="dynamic content")
        + "\n\nCreate a sleek product showcase video with the following script. "
        + _MATCH_NOTE
        + " Use clean product shots, smooth zoom transitions, animated text overlays "
        "for key features, professional lighting, and a minimal background. Start with "
        "a dynamic hook shot, not a static product image. Script: {script}"
    ),
    VideoStyle.TALKING_HEAD: (
        _REFERENCE_NOTE.format(opening="the creator speaking")
        + "\n\nCreate a UGC-style video with a friendly presenter speaking directly to "
        "camera. "
        + _MATCH_NOTE
        + " Use natural, conversational delivery, show the product while speaking about "
        "benefits. Begin with the creator already talking, not a static product shot. "
        "Script: {script}"
    ),
    VideoStyle.LIFESTYLE: (
        _REFERENCE_NOTE.format(opening="lifestyle action")
        + "\n\nCreate a lifestyle montage video showing the product being used in "
        "real-life scenarios. "
        + _MATCH_NOTE
        + " Use multiple quick cuts between scenes, ambient and aspirational aesthetics. "
        "Open with an engaging lifestyle moment, not a static product image. "
        "Script: {script}"
    ),
}


def build_render_prompt(script: str, style: VideoStyle) -> str:
    """Wrap a confirmed script in its style's render prompt."""
    return STYLE_VIDEO_PROMPTS[style].replace("{script}", script)
