"""
Central API router that aggregates all route modules.
"""

from fastapi import APIRouter

from swap_engine.api.routes import listings, proposals, targeting

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(listings.router)
api_router.include_router(targeting.router)
api_router.include_router(proposals.router)
