"""
Top-level API router.
Combines all sub-routers into a single router.
"""

from fastapi import APIRouter

from statement_recon.api.batches import router as batches_router
from statement_recon.api.health import router as health_router
from statement_recon.api.statements import router as statements_router

api_router = APIRouter()

api_router.include_router(health_router)
api_router.include_router(statements_router)
api_router.include_router(batches_router)
