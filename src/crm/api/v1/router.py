"""V1 API router -- aggregates all v1 endpoint routers."""

from __future__ import annotations

from fastapi import APIRouter

from src.crm.api.v1 import auth, contacts, dashboard, health, pipeline, properties

router = APIRouter()

router.include_router(health.router)
router.include_router(auth.router)
router.include_router(pipeline.router)
router.include_router(contacts.router)
router.include_router(properties.router)
router.include_router(dashboard.router)
