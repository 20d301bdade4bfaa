"""
BeatMarket Database Module
Exports database models, connection management, and Base
"""

from .connection import Base, DatabaseManager, database_manager
from .models import (
    Agent,
    Beat,
    Purchase,
    RateLimitEvent,
    EmailVerification,
    Sample
)

__all__ = [
    "Base",
    "DatabaseManager",
    "database_manager",
    "Agent",
    "Beat",
    "Purchase",
    "RateLimitEvent",
    "EmailVerification",
    "Sample"
]
