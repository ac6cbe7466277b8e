from __future__ import annotations

import pytest

from otpflow.api.errors import DuplicateContactError, ValidationError
from otpflow.origination.models import IdentityDraft, LoanTerms
from otpflow.origination.validators import (
    collect_identity_issues,
    collect_loan_terms_issues,
    find_duplicate_contacts,
    validate_identity,
    validate_loan_terms,
    validate_unique_contacts,
)
from tests.fakes import VALID_IDENTITY, VALID_TERMS


def test_find_duplicate_contacts_reports_every_clashing_role() -> None:
    clashes = find_duplicate_contacts(
        {
            "primaryMobile": "9000000001",
            "secondaryMobile": "9000000002",
            "emergencyMobile": " 9000000001 ",
        }
    )

    assert clashes == ["primaryMobile", "emergencyMobile"]


def test_empty_contacts_never_clash() -> None:
    assert find_duplicate_contacts(
        {"primaryMobile": "9000000001", "secondaryMobile": "", "emergencyMobile": "  "}
    ) == []
    validate_unique_contacts({"primaryMobile": "9000000001"})


def test_validate_unique_contacts_raises_with_roles() -> None:
    with pytest.raises(DuplicateContactError) as exc_info:
        validate_unique_contacts({"primaryMobile": "1", "secondaryMobile": "1"})

    assert exc_info.value.roles == ("primaryMobile", "secondaryMobile")


def test_identity_issues_cover_required_fields_and_aadhar_format() -> None:
    draft = IdentityDraft.model_validate({**VALID_IDENTITY, "aadharNumber": "1234", "name": " "})

    issues = collect_identity_issues(draft)

    assert [issue["field"] for issue in issues] == ["name", "aadharNumber"]
    assert issues[1]["message"] == "Aadhar number must be exactly 12 digits"


def test_validate_identity_checks_duplicates_after_fields() -> None:
    validate_identity(IdentityDraft.model_validate(VALID_IDENTITY))

    duplicate = IdentityDraft.model_validate({**VALID_IDENTITY, "secondaryMobile": "9000000001"})
    with pytest.raises(DuplicateContactError):
        validate_identity(duplicate)

    missing = IdentityDraft.model_validate({**VALID_IDENTITY, "email": ""})
    with pytest.raises(ValidationError) as exc_info:
        validate_identity(missing)
    assert exc_info.value.field == "email"


def test_loan_terms_validation_follows_reporting_order() -> None:
    validate_loan_terms(LoanTerms.model_validate(VALID_TERMS))

    terms = LoanTerms.model_validate(
        {**VALID_TERMS, "goldItems": [{"description": "Ring"}], "amount": 50, "interestRate": -1}
    )
    issues = collect_loan_terms_issues(terms)
    assert [issue["field"] for issue in issues] == ["goldItems", "amount", "interestRate"]

    with pytest.raises(ValidationError) as exc_info:
        validate_loan_terms(LoanTerms.model_validate({**VALID_TERMS, "term": 0}))
    assert exc_info.value.message == "Loan duration must be at least 1 month"
