"""Remote calls for customer enrollment, loan creation and interest quotes."""

from __future__ import annotations

import calendar
import logging
from datetime import datetime, timezone
from typing import Any

from otpflow.api.contracts import CustomerLookupResponse, InterestQuoteResponse
from otpflow.api.errors import RemoteRejectedError, message_from_error_body
from otpflow.gateway.client import GatewayReply, GatewayTransport, parse_reply_body
from otpflow.gateway.endpoints import OriginationEndpoints

LOGGER = logging.getLogger(__name__)


class OriginationClient:
    """Business calls used by the loan origination wizard.

    Non-2xx answers raise ``RemoteRejectedError`` with the server message kept
    verbatim; transport failures surface as ``NetworkError`` from the transport.
    """

    def __init__(self, transport: GatewayTransport, endpoints: OriginationEndpoints) -> None:
        self._transport = transport
        self._endpoints = endpoints

    @property
    def endpoints(self) -> OriginationEndpoints:
        return self._endpoints

    def create_customer(self, draft: dict[str, Any]) -> dict[str, Any]:
        reply = self._transport.request(
            "POST", self._endpoints.create_customer_path, json_body=draft
        )
        body = _ensure_ok(reply, "Failed to add customer")
        LOGGER.info(
            "customer_created",
            extra={"flow": "origination", "role": self._endpoints.role},
        )
        return body

    def lookup_customer(self, aadhar_number: str) -> dict[str, Any] | None:
        """Return the stored customer details, or ``None`` when unknown."""
        path = self._endpoints.lookup_customer_path.format(aadhar=aadhar_number)
        reply = self._transport.request("GET", path)
        _ensure_ok(reply, "Failed to check Aadhar number")
        lookup = parse_reply_body(
            CustomerLookupResponse,
            reply,
            "Failed to check Aadhar number",
            error_type=RemoteRejectedError,
        )
        if not lookup.exists:
            return None
        return dict(lookup.customer_details)

    def create_loan(self, payload: dict[str, Any]) -> dict[str, Any]:
        reply = self._transport.request(
            "POST", self._endpoints.create_loan_path, json_body=payload
        )
        body = _ensure_ok(reply, "Failed to create loan")
        record = body.get("data")
        LOGGER.info(
            "loan_created",
            extra={"flow": "origination", "role": self._endpoints.role},
        )
        return record if isinstance(record, dict) else body

    def calculate_interest(
        self,
        principal: float,
        annual_rate: float,
        months: int,
        *,
        disbursed_at: datetime | None = None,
    ) -> float:
        """Return the total repayable amount computed by the remote service."""
        start = disbursed_at or datetime.now(timezone.utc)
        closure = _add_months(start, months)
        reply = self._transport.request(
            "POST",
            self._endpoints.interest_quote_path,
            json_body={
                "principal": principal,
                "annualRate": annual_rate,
                "disbursementDate": start.isoformat(),
                "closureDate": closure.isoformat(),
            },
        )
        _ensure_ok(reply, "Calculation failed")
        quote = parse_reply_body(
            InterestQuoteResponse, reply, "Calculation failed", error_type=RemoteRejectedError
        )
        return quote.total_amount


def _ensure_ok(reply: GatewayReply, fallback: str) -> dict[str, Any]:
    if not reply.ok:
        message = message_from_error_body(reply.body, fallback)
        LOGGER.warning(
            "origination_call_rejected",
            extra={"flow": "origination", "status_code": reply.status_code},
        )
        raise RemoteRejectedError(message, status_code=reply.status_code)
    return reply.body if isinstance(reply.body, dict) else {}


def _add_months(moment: datetime, months: int) -> datetime:
    month_index = moment.month - 1 + int(months)
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)
