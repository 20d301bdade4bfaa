"""
BeatMarket Order API Routes
Buyer checkout: contact verification, order creation and capture
"""

from fastapi import APIRouter, Depends

from ...database.schemas import (
    CaptureRequest,
    CaptureResponse,
    OrderCreateRequest,
    OrderCreateResponse,
    VerificationCheckRequest,
    VerificationSendRequest,
)
from ...services.entitlement_service import EntitlementService
from ...services.verification_service import VerificationService
from ..dependencies import get_client_ip, get_entitlement_service, get_verification_service

router = APIRouter()


@router.post("/orders", response_model=OrderCreateResponse)
async def create_order(
    request: OrderCreateRequest,
    client_ip: str = Depends(get_client_ip),
    service: EntitlementService = Depends(get_entitlement_service)
):
    """Open a payment order at the server-held price"""
    return await service.create_order(request.beat_id, request.buyer_email, request.tier, client_ip)


@router.post("/orders/capture", response_model=CaptureResponse)
async def capture_order(
    request: CaptureRequest,
    client_ip: str = Depends(get_client_ip),
    service: EntitlementService = Depends(get_entitlement_service)
):
    """Capture an approved order; repeating it returns the same link"""
    return await service.capture_order(request.order_id, client_ip)


@router.post("/verification/send")
async def send_verification_code(
    request: VerificationSendRequest,
    service: VerificationService = Depends(get_verification_service)
):
    return await service.send_code(request.email)


@router.post("/verification/verify")
async def verify_email(
    request: VerificationCheckRequest,
    service: VerificationService = Depends(get_verification_service)
):
    return await service.verify_code(request.email, request.code)
