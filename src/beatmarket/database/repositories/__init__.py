"""
BeatMarket Repository Layer
Data access layer with async CRUD and conditional updates
"""

from .base import BaseRepository, RepositoryError, ConflictError
from .agent_repository import AgentRepository
from .beat_repository import BeatRepository
from .purchase_repository import PurchaseRepository
from .rate_limit_repository import RateLimitRepository
from .verification_repository import VerificationRepository
from .sample_repository import SampleRepository

__all__ = [
    "BaseRepository",
    "RepositoryError",
    "ConflictError",
    "AgentRepository",
    "BeatRepository",
    "PurchaseRepository",
    "RateLimitRepository",
    "VerificationRepository",
    "SampleRepository"
]
