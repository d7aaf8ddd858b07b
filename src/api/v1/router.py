"""API v1 router configuration."""

from fastapi import APIRouter

from src.api.v1.endpoints import api_clients, api_keys, integration

router = APIRouter(prefix="/api/v1")

router.include_router(api_clients.router, prefix="/api-clients", tags=["api-clients"])
router.include_router(api_keys.router, prefix="/api-keys", tags=["api-keys"])
router.include_router(integration.router, prefix="/integration", tags=["integration"])
