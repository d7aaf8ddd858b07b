"""API v1 endpoints package."""

from src.api.v1.endpoints import api_clients, api_keys, integration

__all__ = ["api_clients", "api_keys", "integration"]
