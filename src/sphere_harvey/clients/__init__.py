from .harvey import ChatRequest, ChatResponse, HarveyClient, HarveyClientError
from .sphere import (
    PricingQuery,
    PricingValidationError,
    SphereClient,
    SphereError,
    SphereNotFoundError,
    SphereUnavailableError,
)

__all__ = [
    "ChatRequest",
    "ChatResponse",
    "HarveyClient",
    "HarveyClientError",
    "PricingQuery",
    "PricingValidationError",
    "SphereClient",
    "SphereError",
    "SphereNotFoundError",
    "SphereUnavailableError",
]
