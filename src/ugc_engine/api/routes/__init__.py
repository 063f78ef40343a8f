"""API route modules."""

from ugc_engine.api.routes import credits, health, media, videos, webhooks

__all__ = ["credits", "health", "media", "videos", "webhooks"]
