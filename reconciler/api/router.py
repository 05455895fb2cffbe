from fastapi import APIRouter

from reconciler.api.v1 import internal, webhooks

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(webhooks.router)
api_router.include_router(internal.router)
