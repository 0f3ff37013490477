"""API routes."""

from fastapi import APIRouter

from identity_service.api.routes import admin, identify

api_router = APIRouter()

api_router.include_router(identify.router, tags=["identify"])
api_router.include_router(admin.router, prefix="/admin", tags=["admin"])
