from fastapi import APIRouter

from kiosk_pairing.api import activation_codes, admin, auth, kiosks, stream
from kiosk_pairing.schemas.common import HealthResponse

api_router = APIRouter()


@api_router.get("/health", response_model=HealthResponse, tags=["health"])
def api_health_check():
    """Health check endpoint for monitoring and load balancers."""
    return HealthResponse(status="ok", service="api")


api_router.include_router(auth.router, prefix="/auth", tags=["auth"])
api_router.include_router(
    activation_codes.router, prefix="/activation-codes", tags=["activation-codes"]
)
api_router.include_router(kiosks.public_router, prefix="/public/kiosk", tags=["kiosk"])
api_router.include_router(kiosks.auth_router, prefix="/kiosks", tags=["kiosks"])
api_router.include_router(stream.router, prefix="/stream", tags=["sse"])
api_router.include_router(admin.router, prefix="/admin", tags=["admin"])
