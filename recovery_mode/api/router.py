from fastapi import APIRouter
from recovery_mode.api.v0.recovery.main import router as recovery_router

router = APIRouter(prefix="/api")
router.include_router(recovery_router)
