"""Health check endpoints."""

from fastapi import APIRouter, Depends

from core.factory import ServiceFactory, get_factory

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check() -> dict:
    """Basic health check."""
    return {"status": "healthy"}


@router.get("/health/ready")
async def readiness_check(factory: ServiceFactory = Depends(get_factory)) -> dict:
    """Readiness check including the store and the runtimes."""
    stats = await factory.registry.stats()
    return {
        "status": "ready" if stats.storage_exists else "degraded",
        "services": {
            "storage": "healthy" if stats.storage_exists else "missing",
            "ollama": "connected" if await factory.ollama.is_available() else "unreachable",
            "lmstudio": "connected" if await factory.lmstudio.is_available() else "unreachable",
        },
    }
