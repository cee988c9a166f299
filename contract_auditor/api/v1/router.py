"""
API v1 router.
"""
from fastapi import APIRouter

from contract_auditor.api.v1.endpoints import audit, logs, analytics, health

api_router = APIRouter()

# Health check endpoint (no prefix, so it's /api/v1/health)
api_router.include_router(health.router, tags=["health"])

api_router.include_router(audit.router, prefix="/audit", tags=["audit"])
api_router.include_router(logs.router, prefix="/logs", tags=["logs"])
api_router.include_router(analytics.router, prefix="/analytics", tags=["analytics"])
