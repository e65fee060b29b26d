"""AI gateway: analyze, compare, summarize and chat over a generative model."""

from bustapaga.gateway.errors import (
    AttachmentError,
    ConfigurationError,
    EmptyResponseError,
    GatewayError,
    InvalidExtractionError,
    TransportError,
)
from bustapaga.gateway.service import PayslipGateway
from bustapaga.gateway.streaming import ChatStream, StreamState

__all__ = [
    "AttachmentError",
    "ChatStream",
    "ConfigurationError",
    "EmptyResponseError",
    "GatewayError",
    "InvalidExtractionError",
    "PayslipGateway",
    "StreamState",
    "TransportError",
]
