"""
BeatMarket Services
Provider and payment clients plus the fulfillment pipeline components
"""

from .beat_management_service import BeatManagementService
from .callback_service import CallbackService
from .credential_cache import CredentialCache
from .download_service import DownloadPlan, DownloadService
from .entitlement_service import EntitlementService
from .fulfillment_service import FulfillmentService
from .maintenance_service import MaintenanceService
from .notification_service import EmailNotifier
from .payment_client import PayPalClient
from .post_processing_service import PostProcessingService
from .provider_client import GenerationProviderClient
from .rate_limiter import RateLimiter
from .verification_service import VerificationService

__all__ = [
    "BeatManagementService",
    "CallbackService",
    "CredentialCache",
    "DownloadPlan",
    "DownloadService",
    "EntitlementService",
    "FulfillmentService",
    "MaintenanceService",
    "EmailNotifier",
    "PayPalClient",
    "PostProcessingService",
    "GenerationProviderClient",
    "RateLimiter",
    "VerificationService",
]
