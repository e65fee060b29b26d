"""Model client selection, driven by GATEWAY_PROVIDER."""

from __future__ import annotations

import logging

from bustapaga.config import settings
from bustapaga.gateway.protocols import GenerativeModel
from bustapaga.llm.client import GeminiClient
from bustapaga.llm.mock import CannedModelClient

logger = logging.getLogger(__name__)


def build_model_client() -> GenerativeModel:
    """Build the configured model client.

    Raises:
        ConfigurationError: Gemini selected but GEMINI_API_KEY is missing.
    """
    if settings.gateway.provider == "mock":
        logger.warning("GATEWAY_PROVIDER=mock: answers are canned, no model is called")
        return CannedModelClient()

    client = GeminiClient()
    logger.info("Gemini client ready (model=%s)", client.model)
    return client
