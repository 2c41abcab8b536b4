"""google-genai client wrapper.

Vertex AI mode authenticates through Application Default Credentials and is
location-aware; Developer API mode uses an API key.

Usage:
    from santavid.services.vertex_client import get_genai_client

    client = get_genai_client()                    # default location
    client = get_genai_client(location="global")   # global endpoint
"""

import os

from dotenv import load_dotenv
from google import genai

from santavid.config import settings
from santavid.errors import ConfigurationError

# Load .env for GOOGLE_APPLICATION_CREDENTIALS (ADC)
load_dotenv()

# Per-location client cache
_clients: dict[str, genai.Client] = {}

# Models that must use the global endpoint
GLOBAL_REGION_MODELS = {
    "gemini-3-flash-preview",
    "gemini-3-pro-preview",
    "gemini-3-pro-image-preview",
}


def location_for_model(model_id: str) -> str:
    """Return the Vertex AI location needed for a given model ID."""
    if model_id in GLOBAL_REGION_MODELS:
        return "global"
    return settings.google_cloud.location


def get_genai_client(location: str | None = None) -> genai.Client:
    """Get or create a client, cached per location.

    Raises:
        ConfigurationError: If the credentials for the configured mode are missing.
    """
    gcloud = settings.google_cloud

    if not gcloud.use_vertex_ai:
        if not gcloud.api_key:
            raise ConfigurationError("google_cloud.api_key is required when use_vertex_ai is false")
        if "api" not in _clients:
            _clients["api"] = genai.Client(api_key=gcloud.api_key)
        return _clients["api"]

    if not gcloud.project_id:
        raise ConfigurationError("google_cloud.project_id is required for Vertex AI")

    loc = location or gcloud.location
    if loc not in _clients:
        os.environ["GOOGLE_GENAI_USE_VERTEXAI"] = "true"
        os.environ["GOOGLE_CLOUD_PROJECT"] = gcloud.project_id

        _clients[loc] = genai.Client(
            vertexai=True,
            project=gcloud.project_id,
            location=loc,
        )

    return _clients[loc]
