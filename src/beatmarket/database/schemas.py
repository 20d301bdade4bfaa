"""
BeatMarket Pydantic Schemas
Request/response models for API validation and serialization
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Dict, Union
from pydantic import AliasChoices, BaseModel, Field, ConfigDict


# Base configuration for all schemas
class BaseSchema(BaseModel):
    """Base schema with common configuration"""
    model_config = ConfigDict(
        from_attributes=True,
        use_enum_values=True,
        validate_assignment=True,
        arbitrary_types_allowed=True
    )


# Generation Schemas
class GenerationRequest(BaseSchema):
    """Agent request to generate a pair of instrumental beats"""
    title: str = Field(..., min_length=1, description="Beat title")
    genre: str = Field(..., min_length=1, description="One of the agent's declared genres")
    style: str = Field(..., min_length=1, description="Provider style tags")
    provider_api_key: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("provider_api_key", "suno_api_key"),
        description="Provider credential, used once and never stored"
    )
    model: Optional[str] = Field(None, description="Provider model version")
    negative_tags: Optional[str] = Field(None, validation_alias=AliasChoices("negative_tags", "negativeTags"))
    bpm: Optional[float] = Field(None, description="Tempo, clamped to 0..300")
    price: Optional[Union[float, str]] = Field(None, description="Unit price override")
    stems_price: Optional[Union[float, str]] = Field(None, description="Stems price override")
    title_v2: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("title_v2", "secondary_title"),
        description="Title for the second sibling variant"
    )


class BeatSummary(BaseSchema):
    """Compact beat view returned on creation"""
    id: uuid.UUID
    title: str
    genre: str
    status: str
    price: Optional[Decimal] = None
    stems_price: Optional[Decimal] = None


class GenerationResponse(BaseSchema):
    success: bool = True
    task_id: Optional[str]
    agent: Dict[str, Union[str, List[str]]]
    beats: List[BeatSummary]
    message: str


class BeatResponse(BaseSchema):
    """Full beat view for the owning agent"""
    id: uuid.UUID
    title: str
    genre: str
    style: str
    model: str
    bpm: int
    duration: int
    status: str
    wav_status: Optional[str] = None
    stems_status: Optional[str] = None
    task_id: Optional[str] = None
    suno_id: Optional[str] = None
    stream_url: Optional[str] = None
    image_url: Optional[str] = None
    price: Optional[Decimal] = None
    stems_price: Optional[Decimal] = None
    sold: bool
    stems: Optional[Dict[str, str]] = None
    created_at: datetime


class BeatPriceUpdate(BaseSchema):
    price: Optional[float] = Field(None, description="New unit price")
    stems_price: Optional[float] = Field(None, description="New stems price")


# Post-processing Schemas
class PostProcessingRequest(BaseSchema):
    beat_id: uuid.UUID
    provider_api_key: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("provider_api_key", "suno_api_key")
    )


class ReconcileRequest(BaseSchema):
    provider_api_key: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("provider_api_key", "suno_api_key")
    )


# Order Schemas
class OrderCreateRequest(BaseSchema):
    beat_id: uuid.UUID
    buyer_email: str = Field(..., description="Verified buyer contact")
    tier: str = Field(default="track", pattern=r"^(track|stems)$")


class OrderCreateResponse(BaseSchema):
    order_id: str
    purchase_id: uuid.UUID
    amount: str
    currency: str
    tier: str
    platform_fee: str
    seller_share: str


class CaptureRequest(BaseSchema):
    order_id: str = Field(..., min_length=1)


class CaptureResponse(BaseSchema):
    success: bool = True
    download_url: str
    already_captured: bool = False
    expires_in: str = "24 hours"
    max_downloads: int = 5


# Verification Schemas
class VerificationSendRequest(BaseSchema):
    email: str


class VerificationCheckRequest(BaseSchema):
    email: str
    code: str = Field(..., pattern=r"^\d{6}$")


# Sample Schemas
class SampleResponse(BaseSchema):
    id: uuid.UUID
    beat_id: uuid.UUID
    stem_type: str
    file_size: Optional[int] = None
    created_at: datetime
