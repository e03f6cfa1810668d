"""
Schemas Package
"""
from autorest.schemas.auto_rest import (
    ErrorResponse, ListEnvelope, CountResponse, RealtimeInfo,
    ExposedEntityResponse, DiscoveredTableResponse,
    ExposeTableItem, ExposeRequest, ExposeResponse
)

__all__ = [
    "ErrorResponse", "ListEnvelope", "CountResponse", "RealtimeInfo",
    "ExposedEntityResponse", "DiscoveredTableResponse",
    "ExposeTableItem", "ExposeRequest", "ExposeResponse",
]
