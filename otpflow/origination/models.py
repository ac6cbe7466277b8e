"""Pydantic models and wizard state for loan origination."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from otpflow.origination.workflow import STAGE_COLLECT_IDENTITY
from otpflow.otp.models import OtpChallenge


class EmergencyContact(BaseModel):
    """Emergency contact attached to a customer identity."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    mobile: str = ""
    relation: str = ""


class IdentityDraft(BaseModel):
    """Customer identity fields collected before enrollment."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    aadhar_number: str = Field(default="", alias="aadharNumber")
    name: str = ""
    email: str = ""
    primary_mobile: str = Field(default="", alias="primaryMobile")
    secondary_mobile: str = Field(default="", alias="secondaryMobile")
    emergency_contact: EmergencyContact = Field(
        default_factory=EmergencyContact, alias="emergencyContact"
    )
    present_address: str = Field(default="", alias="presentAddress")
    permanent_address: str = Field(default="", alias="permanentAddress")

    def contacts(self) -> dict[str, str]:
        """Contact numbers keyed by role for uniqueness checks."""
        return {
            "primaryMobile": self.primary_mobile,
            "secondaryMobile": self.secondary_mobile,
            "emergencyMobile": self.emergency_contact.mobile,
        }

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class GoldItem(BaseModel):
    """Pledged gold item."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    description: str = ""
    gross_weight: float | None = Field(default=None, alias="grossWeight")
    net_weight: float | None = Field(default=None, alias="netWeight")

    @property
    def is_complete(self) -> bool:
        return bool(self.description.strip()) and bool(self.gross_weight) and bool(self.net_weight)


class LoanTerms(BaseModel):
    """Loan figures entered after both OTP stages."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    gold_items: list[GoldItem] = Field(default_factory=list, alias="goldItems")
    amount: float = 0.0
    term_months: int = Field(default=0, alias="term")
    interest_rate: float = Field(default=0.0, alias="interestRate")
    monthly_payment: float = Field(default=0.0, alias="monthlyPayment")
    total_payment: float = Field(default=0.0, alias="totalPayment")


@dataclass
class WizardState:
    """Mutable state owned by one origination wizard."""

    stage: str = STAGE_COLLECT_IDENTITY
    identity_draft: IdentityDraft = field(default_factory=IdentityDraft)
    issued_identifier: str = ""
    issued_principal_id: str = ""
    identity_verified: bool = False
    loan_otp_verified: bool = False
    loan_otp_challenge: OtpChallenge | None = None
    loan_terms: LoanTerms | None = None
    committed: bool = False
