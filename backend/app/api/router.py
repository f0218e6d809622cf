from fastapi import APIRouter
from app.api.routes import content, purchases

router = APIRouter()
router.include_router(purchases.router, prefix="/purchases", tags=["purchases"])
router.include_router(content.router, prefix="/content", tags=["content"])
