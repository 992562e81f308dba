"""
Order Models
The order row fields this engine touches
"""
from pydantic import BaseModel, Field
from typing import Optional, Dict, Any
from datetime import datetime
from enum import Enum


class OrderStatus(str, Enum):
    """Order status. pending is set at order creation."""
    PENDING = "pending"
    COMPLETED = "completed"
    DECLINED = "declined"
    FAILED = "failed"


class PaymentMethod(str, Enum):
    """Recorded on completion"""
    FREE = "free"
    STRIPE = "stripe"
    RAZORPAY = "razorpay"
    PAYPAL = "paypal"
    PAYSTACK = "paystack"
    POWERTRANZ_SPI = "powertranz-spi"
    POWERTRANZ_HPP = "powertranz-hpp"


class OrderInDB(BaseModel):
    """Order in database"""
    order_id: str
    user_id: Optional[str] = None
    guest_email: Optional[str] = None
    package_id: Optional[str] = None
    quantity: int = 1

    status: OrderStatus = OrderStatus.PENDING
    payment_method: Optional[str] = None  # a PaymentMethod value
    transaction_id: Optional[str] = None
    discount_breakdown: Optional[Dict[str, Any]] = None
    failure_reason: Optional[str] = None

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None


class OrderTransition(BaseModel):
    """Outcome of a status write"""
    order_id: str
    status: Optional[OrderStatus] = None
    applied: bool = False            # row was changed by this call
    already_completed: bool = False  # repeat completion, no-op
    persisted: bool = True           # False when the write failed
