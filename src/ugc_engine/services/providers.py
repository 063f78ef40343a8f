"""Provider selection from settings."""

from ugc_engine.adapters.render.base import RenderProvider
from ugc_engine.adapters.render.kie import KieRenderProvider
from ugc_engine.adapters.render.stub import StubRenderProvider
from ugc_engine.adapters.script.base import ScriptGenerator
from ugc_engine.adapters.script.openai import OpenAIScriptGenerator
from ugc_engine.adapters.script.stub import StubScriptGenerator
from ugc_engine.adapters.storage.base import AssetStore
from ugc_engine.adapters.storage.cloudinary import CloudinaryAssetStore
from ugc_engine.adapters.storage.local import LocalAssetStore
from ugc_engine.config import settings


def get_script_generator() -> ScriptGenerator:
    """Get the configured script generator."""
    provider = settings.script_provider.lower()

    if provider == "openai":
        return OpenAIScriptGenerator()
    else:
        return StubScriptGenerator()


def get_render_provider() -> RenderProvider:
    """Get the configured render provider."""
    provider = settings.render_provider.lower()

    if provider == "kie":
        return KieRenderProvider()
    else:
        return StubRenderProvider()


def get_asset_store() -> AssetStore:
    """Get the configured asset store."""
    store = settings.asset_store.lower()

    if store == "cloudinary":
        return CloudinaryAssetStore()
    else:
        return LocalAssetStore()
