"""Stage constants for the loan origination wizard."""

from __future__ import annotations

STAGE_COLLECT_IDENTITY = "collect_identity"
STAGE_VERIFY_IDENTITY = "verify_identity"
STAGE_VERIFY_LOAN_OTP = "verify_loan_otp"
STAGE_COMMIT = "commit"
STAGE_COMPLETED = "completed"
STAGE_ABANDONED = "abandoned"

NEXT_STAGE_BY_STAGE: dict[str, str] = {
    STAGE_COLLECT_IDENTITY: STAGE_VERIFY_IDENTITY,
    STAGE_VERIFY_IDENTITY: STAGE_VERIFY_LOAN_OTP,
    STAGE_VERIFY_LOAN_OTP: STAGE_COMMIT,
    STAGE_COMMIT: STAGE_COMPLETED,
}

STAGE_ORDER: tuple[str, ...] = (
    STAGE_COLLECT_IDENTITY,
    STAGE_VERIFY_IDENTITY,
    STAGE_VERIFY_LOAN_OTP,
    STAGE_COMMIT,
    STAGE_COMPLETED,
)

TERMINAL_STAGES = {STAGE_COMPLETED, STAGE_ABANDONED}


def next_stage(stage: str) -> str:
    """Return the stage that follows ``stage``; terminal stages map to themselves."""
    normalized = (stage or "").strip().lower()
    if normalized in TERMINAL_STAGES:
        return normalized
    if normalized not in NEXT_STAGE_BY_STAGE:
        raise ValueError(f"Unknown wizard stage: {stage}")
    return NEXT_STAGE_BY_STAGE[normalized]


def stage_index(stage: str) -> int:
    """Position of ``stage`` in the forward order; abandonment sorts last."""
    if stage == STAGE_ABANDONED:
        return len(STAGE_ORDER)
    return STAGE_ORDER.index(stage)
