"""Local validation for identity drafts and loan terms."""

from __future__ import annotations

import re
from typing import Any, Mapping

from otpflow.api.errors import DuplicateContactError, ValidationError
from otpflow.origination.models import IdentityDraft, LoanTerms

CONTACT_ROLES = ("primaryMobile", "secondaryMobile", "emergencyMobile")

_REQUIRED_IDENTITY_FIELDS = (
    ("aadhar_number", "aadharNumber"),
    ("name", "name"),
    ("email", "email"),
    ("primary_mobile", "primaryMobile"),
    ("present_address", "presentAddress"),
    ("permanent_address", "permanentAddress"),
)


def find_duplicate_contacts(contacts: Mapping[str, str]) -> list[str]:
    """Return the contact roles whose non-empty values repeat."""
    roles_by_value: dict[str, list[str]] = {}
    for role in CONTACT_ROLES:
        value = str(contacts.get(role) or "").strip()
        if not value:
            continue
        roles_by_value.setdefault(value, []).append(role)

    clashing: list[str] = []
    for roles in roles_by_value.values():
        if len(roles) > 1:
            clashing.extend(roles)
    return [role for role in CONTACT_ROLES if role in clashing]


def validate_unique_contacts(contacts: Mapping[str, str]) -> None:
    clashing = find_duplicate_contacts(contacts)
    if clashing:
        raise DuplicateContactError(clashing)


def is_valid_aadhar(value: str) -> bool:
    return bool(re.fullmatch(r"\d{12}", (value or "").strip()))


def collect_identity_issues(draft: IdentityDraft) -> list[dict[str, Any]]:
    """Return missing or malformed identity fields as issue records."""
    issues: list[dict[str, Any]] = []
    for attr, wire_name in _REQUIRED_IDENTITY_FIELDS:
        if not str(getattr(draft, attr) or "").strip():
            issues.append(
                {
                    "code": "required",
                    "field": wire_name,
                    "message": "Please fill in all required fields",
                }
            )
    if draft.aadhar_number.strip() and not is_valid_aadhar(draft.aadhar_number):
        issues.append(
            {
                "code": "invalid_format",
                "field": "aadharNumber",
                "message": "Aadhar number must be exactly 12 digits",
            }
        )
    return issues


def validate_identity(draft: IdentityDraft) -> None:
    """Raise on the first identity problem; duplicates are checked last."""
    issues = collect_identity_issues(draft)
    if issues:
        first = issues[0]
        raise ValidationError(first["message"], field=first["field"])
    validate_unique_contacts(draft.contacts())


def collect_loan_terms_issues(terms: LoanTerms) -> list[dict[str, Any]]:
    """Return loan term problems in the order they are reported to the user."""
    issues: list[dict[str, Any]] = []
    if not terms.gold_items or not terms.gold_items[0].is_complete:
        issues.append(
            {
                "code": "required",
                "field": "goldItems",
                "message": "Please add at least one gold item with complete details",
            }
        )
    if terms.amount < 100:
        issues.append(
            {
                "code": "out_of_range",
                "field": "amount",
                "message": "Loan amount must be at least 100",
            }
        )
    if terms.term_months < 1:
        issues.append(
            {
                "code": "out_of_range",
                "field": "term",
                "message": "Loan duration must be at least 1 month",
            }
        )
    if terms.interest_rate < 0:
        issues.append(
            {
                "code": "out_of_range",
                "field": "interestRate",
                "message": "Interest rate cannot be negative",
            }
        )
    if terms.monthly_payment <= 0:
        issues.append(
            {
                "code": "out_of_range",
                "field": "monthlyPayment",
                "message": "Invalid monthly payment amount",
            }
        )
    if terms.total_payment <= 0:
        issues.append(
            {
                "code": "out_of_range",
                "field": "totalPayment",
                "message": "Invalid total payment amount",
            }
        )
    return issues


def validate_loan_terms(terms: LoanTerms) -> None:
    issues = collect_loan_terms_issues(terms)
    if issues:
        first = issues[0]
        raise ValidationError(first["message"], field=first["field"])
