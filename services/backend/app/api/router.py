from fastapi import APIRouter

from services.backend.app.api.routes import health, process, users

api_router = APIRouter()
api_router.include_router(health.router)
api_router.include_router(users.router, tags=["users"])
api_router.include_router(process.router, tags=["process"])
