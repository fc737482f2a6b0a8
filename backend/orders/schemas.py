from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from lifecycle.enums import (
    Audience,
    BadgeVariant,
    LifecycleStage,
    OrderStatus,
    PaymentStatus,
    StatusGroup,
    StatusIcon,
    VisualClass,
)

IssueType = Literal["missing_items", "damaged_items", "wrong_items", "late_delivery", "quality_issue", "other"]
PaymentMethod = Literal["mobile_money", "bank_transfer"]


class StatusDescriptorOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    value: str
    customer_label: str
    internal_label: str
    visual_class: VisualClass
    icon: StatusIcon
    description: str
    stage: LifecycleStage
    group: StatusGroup
    customer_hint: Optional[str] = None


class FilterOptionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    value: str
    label: str


class TaxonomyResponse(BaseModel):
    kind: str
    audience: Audience
    statuses: List[StatusDescriptorOut]
    filter_options: List[FilterOptionOut]
    fallback: StatusDescriptorOut


class BadgeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    value: str
    label: str
    visual_class: VisualClass
    icon: Optional[StatusIcon] = None
    animated: bool
    variant: BadgeVariant
    known: bool
    tooltip: Optional[str] = None
    blocker: Optional[str] = None


class OrderActionsOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    can_upload_payment_proof: bool
    can_add_delivery_address: bool
    can_report_issue: bool
    can_track_shipment: bool
    can_reorder: bool
    tracking_message: Optional[str] = None


class PaymentSummaryOut(BaseModel):
    total_amount: Optional[Decimal] = None
    payment_amount_confirmed: Optional[Decimal] = None
    balance_remaining: Optional[Decimal] = None
    payment_status: Optional[PaymentStatus] = None
    has_partial_payment: bool
    payment_proof_pending: bool
    currency: str


class OrderItemOut(BaseModel):
    id: str
    product_name: str
    quantity: Decimal
    unit: Optional[str] = None
    unit_price: Optional[Decimal] = None
    total_price: Optional[Decimal] = None


class OrderView(BaseModel):
    id: str
    order_number: str
    customer_id: str
    status: str
    currency: str
    created_at: Optional[datetime] = None
    estimated_delivery_date: Optional[date] = None
    tracking_number: Optional[str] = None
    carrier: Optional[str] = None
    delivery_address_id: Optional[str] = None
    quote_number: Optional[str] = None
    has_payment_proof: bool = False
    items: List[OrderItemOut]
    badge: BadgeOut
    actions: OrderActionsOut
    payment: PaymentSummaryOut
    shipping_blockers: List[str] = Field(default_factory=list)


class OrderListResponse(BaseModel):
    results: List[OrderView]
    total: int
    status_filter: str


class OrderUpdatePayload(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    status: Optional[OrderStatus] = None
    tracking_number: Optional[str] = Field(default=None, max_length=120)
    carrier: Optional[str] = Field(default=None, max_length=120)
    estimated_delivery_date: Optional[date] = None
    delivery_address_id: Optional[str] = Field(default=None, max_length=64)
    admin_notes: Optional[str] = Field(default=None, max_length=2000)

    @field_validator("status")
    @classmethod
    def reject_unknown_status(cls, value: Optional[OrderStatus]) -> Optional[OrderStatus]:
        if value == OrderStatus.UNKNOWN:
            raise ValueError("Estado de pedido no valido")
        return value


class DeliveryAddressPayload(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    delivery_address_id: str = Field(min_length=1, max_length=64)


class IssueReportPayload(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    issue_type: IssueType
    description: str = Field(min_length=5, max_length=2000)


class IssueReportOut(BaseModel):
    id: str
    order_id: str
    issue_type: IssueType
    created_at: datetime


class PaymentProofOut(BaseModel):
    order_id: str
    path: str
    uploaded_at: datetime
    payment_reference: str
    payment_method: PaymentMethod


class SignedUrlOut(BaseModel):
    url: str
    expires_in: int


class QuoteView(BaseModel):
    id: str
    quote_number: str
    customer_id: str
    status: str
    currency: str
    total_amount: Optional[Decimal] = None
    valid_until: Optional[datetime] = None
    created_at: Optional[datetime] = None
    badge: BadgeOut
    can_respond: bool


class QuoteListResponse(BaseModel):
    results: List[QuoteView]
    total: int
    status_filter: str


class QuoteResponsePayload(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    accept: bool
    reason: Optional[str] = Field(default=None, max_length=1000)
