from fastapi import APIRouter

from civic_resolver.api.routes import cache, directory, health, jurisdictions

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(jurisdictions.router, prefix="/jurisdictions", tags=["public"])
api_router.include_router(directory.router, prefix="/directory", tags=["directory"])
api_router.include_router(cache.router, prefix="/cache", tags=["cache"])
