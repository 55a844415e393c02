"""API v1 router aggregating all v1 endpoints."""

from fastapi import APIRouter

from datachat.api.v1.endpoints import agent

api_router = APIRouter()
api_router.include_router(agent.router)
