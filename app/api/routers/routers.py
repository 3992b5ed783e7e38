# Central API router include file
from fastapi import APIRouter

# Import domain routers
from app.datasources.router import router as datasources_router

# Create main API router
api_router = APIRouter()

# Include domain routers with prefixes
api_router.include_router(datasources_router)
