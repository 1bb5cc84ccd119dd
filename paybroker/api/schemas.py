"""
Pydantic schemas for API request/response models.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from paybroker.core.types import PaymentMethod


class CreatePaymentRequest(BaseModel):
    """Request schema for creating a payment."""

    booking_id: str = Field(..., min_length=1, max_length=100, description="Booking identifier")
    amount: int = Field(..., gt=0, description="Amount in base currency units (VND)")
    method: PaymentMethod = Field(..., description="VNPAY, MOMO, VIETQR or PAYOS")
    description: Optional[str] = Field(
        default=None, max_length=255, description="Order description shown by the provider"
    )

    @field_validator("method", mode="before")
    @classmethod
    def normalize_method(cls, v: Any) -> Any:
        return v.strip().upper() if isinstance(v, str) else v

    model_config = {
        "json_schema_extra": {
            "examples": [
                {"booking_id": "B1", "amount": 150000, "method": "VNPAY"},
                {"booking_id": "B2", "amount": 99000, "method": "VIETQR"},
            ]
        }
    }


class PaymentResponse(BaseModel):
    """A payment as seen by the booking frontend."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(..., description="Payment ID")
    booking_id: str
    user_id: str
    method: str
    amount: int
    reference: str = Field(..., description="Provider correlation reference")
    transaction_id: Optional[str] = Field(default=None, description="Provider transaction id")
    payment_url: Optional[str] = Field(default=None, description="Redirect to the provider")
    qr_image_url: Optional[str] = Field(default=None, description="QR payload or image URL")
    status: str
    payment_date: datetime
    created_at: datetime
    updated_at: datetime


class PaymentListResponse(BaseModel):
    items: List[PaymentResponse]
    total: int
    page: int
    limit: int


class ForceSuccessRequest(BaseModel):
    """Operator override for a payment stuck in PENDING."""

    operator: str = Field(..., min_length=1, max_length=100, description="Who is forcing it")
    transaction_id: Optional[str] = Field(default=None, max_length=255)
    reason: Optional[str] = Field(default=None, max_length=500)


class HealthCheckResponse(BaseModel):
    """Response schema for health checks."""

    status: str = Field(..., description="Overall health status (healthy/unhealthy)")
    checks: Optional[Dict[str, Any]] = Field(default=None, description="Individual service checks")
    message: Optional[str] = Field(default=None, description="Status message")
