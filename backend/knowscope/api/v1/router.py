"""
API v1 Router
=============

Main router that combines all API v1 endpoints.
"""

from fastapi import APIRouter

from knowscope.api.v1.endpoints import knowledge

api_router = APIRouter()

api_router.include_router(
    knowledge.router,
    prefix="/tenants",
    tags=["Knowledge"],
)
