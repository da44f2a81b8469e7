# backend/marketminds/schemas/payment.py
from pydantic import BaseModel, Field
from typing import Annotated, Literal, Optional, Union
from datetime import datetime
from ..models.payment_request import PlanSnapshot, ReportPayload, SubscriptionPayload

class PlanSnapshotIn(BaseModel):
    plan_id: str = Field(..., description="Catalogue id of the plan")
    plan_name: str = Field(..., description="Display name of the plan")
    duration_months: int = Field(..., description="Subscription length in calendar months")
    reports_included: int = Field(..., description="Total reports included in the plan")
    premium_reports: int = Field(..., description="Premium report quota")
    bluechip_reports: int = Field(..., description="Bluechip report quota")

    def to_snapshot(self) -> PlanSnapshot:
        return PlanSnapshot(**self.model_dump())

class ReportPaymentRequestCreate(BaseModel):
    payment_type: Literal["report"]
    report_id: int = Field(..., description="Report being purchased")
    amount: float = Field(..., description="Amount paid")
    screenshot_data: str = Field(..., description="Proof of payment (opaque)")

    def to_payload(self) -> ReportPayload:
        return ReportPayload(report_id=self.report_id)

class SubscriptionPaymentRequestCreate(BaseModel):
    payment_type: Literal["subscription"]
    subscription_plan: PlanSnapshotIn = Field(..., description="Plan being purchased")
    amount: float = Field(..., description="Amount paid")
    screenshot_data: str = Field(..., description="Proof of payment (opaque)")

    def to_payload(self) -> SubscriptionPayload:
        return SubscriptionPayload(plan=self.subscription_plan.to_snapshot())

PaymentRequestCreate = Annotated[
    Union[ReportPaymentRequestCreate, SubscriptionPaymentRequestCreate],
    Field(discriminator="payment_type"),
]

class AdminReportGrant(ReportPaymentRequestCreate):
    user_id: int = Field(..., description="User receiving the grant")

class AdminSubscriptionGrant(SubscriptionPaymentRequestCreate):
    user_id: int = Field(..., description="User receiving the grant")

AdminGrantCreate = Annotated[
    Union[AdminReportGrant, AdminSubscriptionGrant],
    Field(discriminator="payment_type"),
]

class ReviewRequest(BaseModel):
    decision: Literal["approved", "rejected"]
    admin_comment: Optional[str] = Field(None, description="Note shown to the user")

class AdminDecision(BaseModel):
    admin_comment: Optional[str] = Field(None, description="Note shown to the user")

class PaymentRequestOut(BaseModel):
    id: int
    user_id: int
    payment_type: str
    report_id: Optional[int] = None
    subscription_plan: Optional[dict] = None
    item_name: str
    amount: float
    status: str
    admin_comment: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    reviewed_by: Optional[int] = None
    is_admin_grant: bool = False
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
