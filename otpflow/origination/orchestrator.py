"""Staged loan origination wizard composed from two OTP exchanges."""

from __future__ import annotations

import logging
from typing import Any, Callable

from otpflow.api.errors import InvalidStateError, ValidationError
from otpflow.core.clock import Clock
from otpflow.core.config import OtpConfig
from otpflow.core.executor import BlockingRunner, run_blocking
from otpflow.gateway.client import VerificationGatewayClient
from otpflow.gateway.endpoints import OriginationEndpoints, OtpEndpoints
from otpflow.gateway.origination_client import OriginationClient
from otpflow.origination.models import IdentityDraft, LoanTerms, WizardState
from otpflow.origination.validators import (
    find_duplicate_contacts,
    is_valid_aadhar,
    validate_identity,
    validate_loan_terms,
)
from otpflow.origination.workflow import (
    STAGE_ABANDONED,
    STAGE_COLLECT_IDENTITY,
    STAGE_COMMIT,
    STAGE_COMPLETED,
    STAGE_VERIFY_IDENTITY,
    STAGE_VERIFY_LOAN_OTP,
    TERMINAL_STAGES,
    next_stage,
    stage_index,
)
from otpflow.otp.exchange import OtpExchangeUnit
from otpflow.otp.models import OtpChallenge, PrincipalRef, VerificationOutcome

LOGGER = logging.getLogger(__name__)

_LOOKUP_FIELDS = (
    "name",
    "email",
    "primaryMobile",
    "secondaryMobile",
    "presentAddress",
    "permanentAddress",
)


class OriginationWizard:
    """Customer enrollment, identity OTP, loan OTP and loan creation.

    One implementation serves every role; the role only changes the
    ``OriginationEndpoints`` strategy. Stages only move forward and ``COMMIT``
    is reachable only after both OTP exchanges verified.
    """

    def __init__(
        self,
        *,
        endpoints: OriginationEndpoints,
        gateway: VerificationGatewayClient,
        client: OriginationClient,
        clock: Clock,
        otp_settings: OtpConfig | None = None,
        run_blocking: BlockingRunner = run_blocking,
        current_user_id: Callable[[], str | None] | None = None,
    ) -> None:
        self._endpoints = endpoints
        self._gateway = gateway
        self._client = client
        self._clock = clock
        self._otp_settings = otp_settings or OtpConfig()
        self._run_blocking = run_blocking
        self._current_user_id = current_user_id

        self._state = WizardState()
        self._epoch = 0
        self._principal: PrincipalRef | None = None
        self._identity_unit: OtpExchangeUnit | None = None
        self._loan_unit: OtpExchangeUnit | None = None
        self._submitting_identity = False
        self._committing = False
        self._committed_record: dict[str, Any] | None = None

    @property
    def role(self) -> str:
        return self._endpoints.role

    @property
    def stage(self) -> str:
        return self._state.stage

    @property
    def state(self) -> WizardState:
        return self._state

    @property
    def principal(self) -> PrincipalRef | None:
        return self._principal

    @property
    def identity_otp(self) -> OtpExchangeUnit | None:
        return self._identity_unit

    @property
    def loan_otp(self) -> OtpExchangeUnit | None:
        return self._loan_unit

    @property
    def committed_record(self) -> dict[str, Any] | None:
        return self._committed_record

    def update_identity(self, **fields: Any) -> list[str]:
        """Edit the identity draft and return clashing contact roles."""
        self._require_stage(STAGE_COLLECT_IDENTITY)
        self._state.identity_draft = _merge_draft(self._state.identity_draft, fields)
        return find_duplicate_contacts(self._state.identity_draft.contacts())

    async def lookup_existing_customer(self, aadhar_number: str) -> dict[str, Any] | None:
        """Prefill the draft from an existing customer with this Aadhar number."""
        self._require_stage(STAGE_COLLECT_IDENTITY)
        aadhar_number = (aadhar_number or "").strip()
        if not is_valid_aadhar(aadhar_number):
            raise ValidationError(
                "Aadhar number must be exactly 12 digits", field="aadharNumber"
            )
        epoch = self._epoch
        details = await self._run_blocking(self._client.lookup_customer, aadhar_number)
        if self._is_stale(epoch, STAGE_COLLECT_IDENTITY):
            LOGGER.debug("stale_lookup_discarded", extra={"flow": "origination"})
            return None
        prefill: dict[str, Any] = {"aadharNumber": aadhar_number}
        if details:
            for key in _LOOKUP_FIELDS:
                if details.get(key):
                    prefill[key] = details[key]
            emergency = details.get("emergencyContact") or {}
            if isinstance(emergency, dict):
                prefill["emergencyContact"] = {
                    "mobile": emergency.get("mobile") or "",
                    "relation": emergency.get("relation") or "",
                }
        self._state.identity_draft = _merge_draft(self._state.identity_draft, prefill)
        return details

    async def submit_identity(self) -> OtpChallenge | None:
        """Create the customer remotely and open the identity OTP stage."""
        self._require_stage(STAGE_COLLECT_IDENTITY)
        if self._submitting_identity:
            raise InvalidStateError("Customer submission is already in progress")
        draft = self._state.identity_draft
        validate_identity(draft)

        epoch = self._epoch
        self._submitting_identity = True
        try:
            record = await self._run_blocking(self._client.create_customer, draft.to_payload())
        finally:
            self._submitting_identity = False
        if self._is_stale(epoch, STAGE_COLLECT_IDENTITY):
            LOGGER.debug("stale_customer_creation_discarded", extra={"flow": "origination"})
            return None

        self._state.issued_identifier = _bound_contact(draft, self._endpoints.identity_binding)
        self._state.issued_principal_id = _record_id(record)
        self._identity_unit = self._new_unit(self._endpoints.identity_otp, name="identity")
        self._identity_unit.subscribe(self._on_identity_change)
        self._advance(STAGE_VERIFY_IDENTITY)

        if self._endpoints.creation_issues_otp:
            return self._identity_unit.attach_issued_challenge(self._state.issued_identifier)
        return await self._identity_unit.request_code(self._state.issued_identifier)

    async def request_identity_code(self) -> OtpChallenge | None:
        unit = self._require_unit(STAGE_VERIFY_IDENTITY, self._identity_unit)
        return await unit.request_code(self._state.issued_identifier)

    async def submit_identity_code(self, code: str | None = None) -> VerificationOutcome:
        unit = self._require_unit(STAGE_VERIFY_IDENTITY, self._identity_unit)
        return await unit.submit_code(code)

    async def resend_identity_code(self) -> OtpChallenge | None:
        unit = self._require_unit(STAGE_VERIFY_IDENTITY, self._identity_unit)
        return await unit.resend()

    async def request_loan_code(self) -> OtpChallenge | None:
        unit = self._require_unit(STAGE_VERIFY_LOAN_OTP, self._loan_unit)
        identifier = _bound_contact(self._state.identity_draft, self._endpoints.loan_otp_binding)
        challenge = await unit.request_code(identifier)
        if challenge is not None:
            self._state.loan_otp_challenge = challenge
        return challenge

    async def submit_loan_code(self, code: str | None = None) -> VerificationOutcome:
        unit = self._require_unit(STAGE_VERIFY_LOAN_OTP, self._loan_unit)
        return await unit.submit_code(code)

    async def resend_loan_code(self) -> OtpChallenge | None:
        unit = self._require_unit(STAGE_VERIFY_LOAN_OTP, self._loan_unit)
        challenge = await unit.resend()
        if challenge is not None:
            self._state.loan_otp_challenge = challenge
        return challenge

    def set_loan_terms(self, terms: LoanTerms | dict[str, Any]) -> LoanTerms:
        self._require_stage(STAGE_VERIFY_LOAN_OTP, STAGE_COMMIT)
        if not isinstance(terms, LoanTerms):
            terms = LoanTerms.model_validate(terms)
        self._state.loan_terms = terms
        return terms

    async def quote_interest(self) -> LoanTerms:
        """Fill monthly and total payment from the remote interest calculation."""
        self._require_stage(STAGE_VERIFY_LOAN_OTP, STAGE_COMMIT)
        terms = self._state.loan_terms
        if terms is None or terms.amount <= 0 or terms.interest_rate <= 0 or terms.term_months <= 0:
            raise ValidationError(
                "Loan amount, interest rate and duration are required for a quote",
                field="amount",
            )
        epoch = self._epoch
        total = await self._run_blocking(
            self._client.calculate_interest,
            terms.amount,
            terms.interest_rate,
            terms.term_months,
        )
        if self._is_stale(epoch, STAGE_VERIFY_LOAN_OTP, STAGE_COMMIT):
            LOGGER.debug("stale_interest_quote_discarded", extra={"flow": "origination"})
            return terms
        current = self._state.loan_terms
        if current is None or (
            current.amount, current.interest_rate, current.term_months
        ) != (terms.amount, terms.interest_rate, terms.term_months):
            LOGGER.debug("outdated_interest_quote_discarded", extra={"flow": "origination"})
            return current if current is not None else terms
        quoted = current.model_copy(
            update={
                "monthly_payment": float(round(total / terms.term_months)),
                "total_payment": float(total),
            }
        )
        self._state.loan_terms = quoted
        return quoted

    async def commit(self) -> dict[str, Any] | None:
        """Create the loan exactly once; re-entry returns the stored record."""
        if self._state.stage == STAGE_COMPLETED and self._committed_record is not None:
            return self._committed_record
        self._require_stage(STAGE_COMMIT)
        if not (self._state.identity_verified and self._state.loan_otp_verified):
            raise InvalidStateError("Customer must be verified before adding a loan.")
        if self._committing:
            raise InvalidStateError("Loan submission is already in progress")

        draft = self._state.identity_draft
        validate_identity(draft)
        terms = self._state.loan_terms
        if terms is None:
            raise ValidationError("Please enter the loan details", field="amount")
        validate_loan_terms(terms)
        payload = self._loan_payload(draft, terms)

        epoch = self._epoch
        self._committing = True
        try:
            record = await self._run_blocking(self._client.create_loan, payload)
        finally:
            self._committing = False
        if self._is_stale(epoch, STAGE_COMMIT):
            LOGGER.debug("stale_commit_discarded", extra={"flow": "origination"})
            return None

        self._committed_record = record
        self._dispose_units()
        self._advance(STAGE_COMPLETED)
        self._state = WizardState(stage=STAGE_COMPLETED, committed=True)
        return record

    def abandon(self) -> None:
        """Drop the wizard state and both exchanges."""
        if self._state.stage in TERMINAL_STAGES:
            return
        self._epoch += 1
        self._dispose_units()
        LOGGER.info(
            "wizard_abandoned",
            extra={"flow": "origination", "stage": self._state.stage, "role": self.role},
        )
        self._state = WizardState(stage=STAGE_ABANDONED)
        self._principal = None

    def _loan_payload(self, draft: IdentityDraft, terms: LoanTerms) -> dict[str, Any]:
        if self._principal is None:
            raise InvalidStateError("Customer must be verified before adding a loan.")
        payload = draft.to_payload()
        payload.update(
            {
                "customerId": self._principal.principal_id,
                "goldItems": [item.model_dump(by_alias=True) for item in terms.gold_items],
                "interestRate": terms.interest_rate,
                "amount": terms.amount,
                "term": terms.term_months,
                "monthlyPayment": terms.monthly_payment,
                "totalPayment": terms.total_payment,
                "createdBy": (self._current_user_id() if self._current_user_id else None) or "",
            }
        )
        return payload

    def _on_identity_change(self, unit: OtpExchangeUnit) -> None:
        if self._state.stage != STAGE_VERIFY_IDENTITY or not unit.outcome.is_verified:
            return
        verified = unit.outcome.principal or PrincipalRef(principal_id="")
        principal_id = verified.principal_id or self._state.issued_principal_id
        self._principal = PrincipalRef(
            principal_id=principal_id,
            role=verified.role,
            identifier=self._state.issued_identifier,
            display_name=verified.display_name or self._state.identity_draft.name,
        )
        self._state.issued_principal_id = principal_id
        self._state.identity_verified = True
        self._loan_unit = self._new_unit(
            self._endpoints.loan_otp,
            name="loan",
            extra={"customerId": principal_id},
        )
        self._loan_unit.subscribe(self._on_loan_change)
        self._advance(STAGE_VERIFY_LOAN_OTP)

    def _on_loan_change(self, unit: OtpExchangeUnit) -> None:
        if self._state.stage != STAGE_VERIFY_LOAN_OTP or not unit.outcome.is_verified:
            return
        self._state.loan_otp_verified = True
        self._advance(STAGE_COMMIT)

    def _new_unit(
        self,
        endpoints: OtpEndpoints,
        *,
        name: str,
        extra: dict[str, str] | None = None,
    ) -> OtpExchangeUnit:
        return OtpExchangeUnit(
            channel=self._gateway.channel(endpoints, extra),
            clock=self._clock,
            settings=self._otp_settings,
            run_blocking=self._run_blocking,
            name=f"{self.role}-{name}",
        )

    def _advance(self, target: str) -> None:
        current = self._state.stage
        if next_stage(current) != target or stage_index(target) <= stage_index(current):
            raise InvalidStateError(f"Cannot move from {current} to {target}")
        if target == STAGE_COMMIT and not (
            self._state.identity_verified and self._state.loan_otp_verified
        ):
            raise InvalidStateError("Both OTP stages must be verified before commit")
        self._state.stage = target
        LOGGER.info(
            "wizard_stage_changed",
            extra={"flow": "origination", "stage": target, "role": self.role},
        )

    def _require_stage(self, *stages: str) -> None:
        if self._state.stage not in stages:
            raise InvalidStateError(f"Operation not allowed in stage {self._state.stage}")

    def _require_unit(self, stage: str, unit: OtpExchangeUnit | None) -> OtpExchangeUnit:
        self._require_stage(stage)
        if unit is None:
            raise InvalidStateError(f"No OTP exchange is active in stage {stage}")
        return unit

    def _is_stale(self, epoch: int, *stages: str) -> bool:
        return epoch != self._epoch or self._state.stage not in stages

    def _dispose_units(self) -> None:
        for unit in (self._identity_unit, self._loan_unit):
            if unit is not None:
                unit.dispose()
        self._identity_unit = None
        self._loan_unit = None


def _merge_draft(draft: IdentityDraft, fields: dict[str, Any]) -> IdentityDraft:
    data = draft.model_dump(by_alias=True)
    for key, value in fields.items():
        info = IdentityDraft.model_fields.get(key)
        wire_name = info.alias if info is not None and info.alias else key
        if wire_name == "emergencyContact" and isinstance(value, dict):
            value = {**data.get("emergencyContact", {}), **value}
        data[wire_name] = value
    return IdentityDraft.model_validate(data)


def _bound_contact(draft: IdentityDraft, binding: str) -> str:
    if binding == "mobile":
        return draft.primary_mobile.strip()
    return draft.email.strip()


def _record_id(record: Any) -> str:
    if not isinstance(record, dict):
        return ""
    customer = record.get("customer")
    if isinstance(customer, dict) and customer.get("_id"):
        return str(customer["_id"])
    data = record.get("data")
    if isinstance(data, dict) and data.get("_id"):
        return str(data["_id"])
    return str(record.get("_id") or "")
