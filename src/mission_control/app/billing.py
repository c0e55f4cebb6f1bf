"""Quotes and invoices for the service business.

A quote is two line items (base service, callout fee) and their total. An
invoice is issued immediately and, when email is configured, sent to the
customer. Both are mirrored to Supabase and the spreadsheet best-effort.
"""

from __future__ import annotations

import html
import logging
import math
from datetime import UTC, datetime
from typing import Any

from .errors import InvalidRequestError
from .integrations import Integrations
from .models import Invoice, LineItem, Quote, now_ms

logger = logging.getLogger(__name__)


def as_amount(raw: Any) -> float:
    """Coerce a client-supplied amount to a number; anything unusable is 0."""
    if isinstance(raw, bool) or raw is None:
        return 0.0
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(value) or math.isinf(value):
        return 0.0
    return value


class BillingService:
    def __init__(self, integrations: Integrations) -> None:
        self.integrations = integrations

    def create_quote(
        self,
        *,
        customer_name: str | None,
        service_type: str | None,
        notes: str | None = "",
        base_price: Any = 0,
        callout_fee: Any = 0,
    ) -> Quote:
        if not customer_name or not service_type:
            raise InvalidRequestError("customer_name and service_type required")

        line_items = [
            LineItem(label="Base service", amount=as_amount(base_price)),
            LineItem(label="Callout fee", amount=as_amount(callout_fee)),
        ]
        quote = Quote(
            id=f"Q-{now_ms()}",
            customer_name=customer_name,
            service_type=service_type,
            notes=notes or "",
            line_items=line_items,
            total=sum(item.amount for item in line_items),
        )
        created_at = _utc_now_iso()

        if self.integrations.supabase.configured:
            row = {**quote.model_dump(mode="json"), "created_at": created_at}
            self.integrations.supabase.insert("quotes", [row])
        self.integrations.sheets.append_row(
            "quotes",
            [
                created_at,
                quote.id,
                quote.customer_name,
                quote.service_type,
                quote.total,
                quote.notes,
            ],
        )
        logger.info("quote_create event=created quote_id=%s total=%s", quote.id, quote.total)
        return quote

    def create_invoice(
        self,
        *,
        customer_name: str | None,
        amount: Any,
        email: str | None = None,
        quote_id: str | None = None,
    ) -> Invoice:
        numeric_amount = as_amount(amount)
        if not customer_name or not numeric_amount:
            raise InvalidRequestError("customer_name and amount required")

        invoice = Invoice(
            id=f"INV-{now_ms()}",
            customer_name=customer_name,
            email=email or None,
            quote_id=quote_id or None,
            amount=numeric_amount,
            status="issued",
            issued_at=_utc_now_iso(),
        )

        if self.integrations.supabase.configured:
            self.integrations.supabase.insert(
                "invoices", [invoice.model_dump(mode="json", exclude={"email_sent"})]
            )

        email_client = self.integrations.email
        if email_client.can_send and invoice.email:
            outcome = email_client.send(
                to=invoice.email,
                subject=f"Invoice {invoice.id}",
                html=render_invoice_email(invoice),
            )
            invoice.email_sent = outcome.ok

        self.integrations.sheets.append_row(
            "invoices",
            [
                _utc_now_iso(),
                invoice.id,
                invoice.customer_name,
                invoice.amount,
                invoice.status,
                invoice.email or "",
            ],
        )
        logger.info(
            "invoice_create event=issued invoice_id=%s amount=%s email_sent=%s",
            invoice.id,
            invoice.amount,
            invoice.email_sent,
        )
        return invoice


def render_invoice_email(invoice: Invoice) -> str:
    name = html.escape(invoice.customer_name)
    amount = _format_amount(invoice.amount)
    return f"<p>Hello {name}, your invoice amount is <b>{amount}</b>.</p>"


def _format_amount(amount: float) -> str:
    return str(int(amount)) if amount.is_integer() else f"{amount:.2f}"


def _utc_now_iso() -> str:
    return datetime.now(tz=UTC).isoformat().replace("+00:00", "Z")
