# src/cidvault/api/routes_public.py
from __future__ import annotations

from fastapi import APIRouter

from cidvault.api.routes_public_parts.accounts import router as accounts_router
from cidvault.api.routes_public_parts.admin import router as admin_router
from cidvault.api.routes_public_parts.events import router as events_router
from cidvault.api.routes_public_parts.health import router as health_router
from cidvault.api.routes_public_parts.messages import router as messages_router

public_router = APIRouter()

public_router.include_router(health_router, prefix="/v1", tags=["health"])
public_router.include_router(messages_router, prefix="/v1", tags=["messages"])
public_router.include_router(accounts_router, prefix="/v1", tags=["accounts"])
public_router.include_router(admin_router, prefix="/v1", tags=["admin"])
public_router.include_router(events_router, prefix="/v1", tags=["events"])
