"""Billing model schemas

One pydantic variant per billing type, discriminated on ``type``. Variants
forbid extra fields, so a HOURLY model carrying ``fixed_amount`` is rejected.
"""

from decimal import Decimal
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator

from app.models.enums import BillingCycle
from app.utils.money import percent_of, quantize


class _Variant(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class HourlyBilling(_Variant):
    type: Literal["HOURLY"] = "HOURLY"
    hourly_rate: Decimal = Field(..., ge=0)


class FixedFeeBilling(_Variant):
    type: Literal["FIXED_FEE"] = "FIXED_FEE"
    fixed_amount: Decimal = Field(..., ge=0)


class MilestonePayment(_Variant):
    """Payout for one milestone, given either as an amount or as a percentage of the project value"""
    milestone_id: UUID
    amount: Optional[Decimal] = Field(None, ge=0)
    percentage: Optional[Decimal] = Field(None, ge=0, le=100)

    @model_validator(mode="after")
    def _amount_or_percentage(self) -> "MilestonePayment":
        if self.amount is None and self.percentage is None:
            raise ValueError(f"milestone {self.milestone_id}: amount or percentage is required")
        return self


class MilestoneBilling(_Variant):
    type: Literal["MILESTONE_BASED"] = "MILESTONE_BASED"
    total_amount: Optional[Decimal] = Field(None, ge=0, description="Project value that percentages refer to")
    milestone_payments: List[MilestonePayment] = Field(default_factory=list)

    @model_validator(mode="after")
    def _consistent_payouts(self) -> "MilestoneBilling":
        seen = set()
        for payment in self.milestone_payments:
            if payment.milestone_id in seen:
                raise ValueError(f"milestone {payment.milestone_id} configured more than once")
            seen.add(payment.milestone_id)
            if payment.percentage is None:
                continue
            if self.total_amount is None:
                if payment.amount is None:
                    raise ValueError(
                        f"milestone {payment.milestone_id}: percentage payout needs total_amount"
                    )
                continue
            if payment.amount is not None and quantize(payment.amount) != percent_of(self.total_amount, payment.percentage):
                raise ValueError(
                    f"milestone {payment.milestone_id}: amount {payment.amount} conflicts with "
                    f"{payment.percentage}% of {self.total_amount}"
                )
        return self

    def payout_for(self, milestone_id: UUID) -> Optional[Decimal]:
        """Configured payout for a milestone, or None when it has no payment configuration"""
        for payment in self.milestone_payments:
            if payment.milestone_id == milestone_id:
                if payment.amount is not None:
                    return quantize(payment.amount)
                return percent_of(self.total_amount, payment.percentage)
        return None


class RetainerBilling(_Variant):
    type: Literal["RETAINER"] = "RETAINER"
    retainer_amount: Decimal = Field(..., ge=0)


class SubscriptionBilling(_Variant):
    type: Literal["SUBSCRIPTION"] = "SUBSCRIPTION"
    subscription_amount: Decimal = Field(..., ge=0)


BillingComponent = Annotated[
    Union[HourlyBilling, FixedFeeBilling, MilestoneBilling, RetainerBilling, SubscriptionBilling],
    Field(discriminator="type"),
]


class MixedBilling(_Variant):
    """Ordered combination of non-mixed models; each contributes its own line items"""
    type: Literal["MIXED"] = "MIXED"
    components: List[BillingComponent] = Field(..., min_length=1)

    @field_validator("components")
    @classmethod
    def _one_of_each_kind(cls, v: List[Any]) -> List[Any]:
        kinds = [c.type for c in v]
        repeated = sorted({kind for kind in kinds if kinds.count(kind) > 1})
        if repeated:
            raise ValueError(f"a mixed model holds each component kind once; repeated: {', '.join(repeated)}")
        return v


BillingModel = Annotated[
    Union[HourlyBilling, FixedFeeBilling, MilestoneBilling, RetainerBilling, SubscriptionBilling, MixedBilling],
    Field(discriminator="type"),
]

_billing_model_adapter = TypeAdapter(BillingModel)


def parse_billing_model(data: Union[Dict[str, Any], BaseModel]) -> BillingModel:
    """Validate a stored/posted billing model document into its variant"""
    if isinstance(data, BaseModel):
        return data
    return _billing_model_adapter.validate_python(data)


def dump_billing_model(model: BillingModel) -> Dict[str, Any]:
    """JSON document for the billing_contracts.billing_model column"""
    return _billing_model_adapter.dump_python(model, mode="json")


class BillingConfiguration(BaseModel):
    """Contract terms independent of the model type"""
    auto_invoice: bool = False
    billing_cycle: BillingCycle = BillingCycle.MONTHLY
    payment_terms: int = Field(30, ge=0, description="Days until the invoice is due")
    tax_rate: Decimal = Field(Decimal("0"), ge=0, le=100)
    discount_rate: Optional[Decimal] = Field(None, ge=0, le=100)
    currency: str = Field("USD", pattern=r"^[A-Z]{3}$")

    @field_validator("currency", mode="before")
    @classmethod
    def _upper(cls, v: Any) -> Any:
        return v.strip().upper() if isinstance(v, str) else v
