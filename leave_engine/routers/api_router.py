from fastapi import APIRouter
from leave_engine.routers import leave, comp_off, admin

# Routers are aggregated here; main.py only imports this hub.
api_router = APIRouter()

api_router.include_router(leave.router, tags=["Leave"])
api_router.include_router(comp_off.router, tags=["Compensatory Off"])
api_router.include_router(admin.router, tags=["Administration"])
