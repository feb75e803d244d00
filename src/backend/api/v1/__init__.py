"""
API v1 routes.
"""

from fastapi import APIRouter

from .endpoints import requests

api_router = APIRouter()

api_router.include_router(requests.router, prefix="/requests", tags=["requests"])
