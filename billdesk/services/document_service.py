"""Shared parsing and line-item handling for invoices and estimates.

Request payloads arrive as JSON with string or numeric amounts and ISO
dates. These helpers turn them into model values and collect field
errors in the same dict the services return.
"""

from datetime import date
from decimal import Decimal, InvalidOperation

from billdesk.models.client import Client
from billdesk.models.document import to_money
from billdesk.services.sanitize import clean_text
from billdesk.services.tenant_service import get_scoped

MAX_LINE_ITEMS = 100


def parse_date(value, field, errors):
    if value in (None, ""):
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        errors[field] = "Use the YYYY-MM-DD date format."
        return None


def parse_amount(value, field, errors, minimum=Decimal("0")):
    if value in (None, ""):
        return None
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        errors[field] = "Must be a number."
        return None
    if not amount.is_finite() or amount < minimum:
        errors[field] = f"Must be at least {minimum}."
        return None
    return to_money(amount)


def resolve_client(account_id, client_id, errors):
    """The account's client, or None with an error when it lives elsewhere."""
    if not client_id:
        errors["client_id"] = "Client is required."
        return None
    client = get_scoped(Client, account_id, client_id)
    if client is None:
        errors["client_id"] = "Client not found."
    return client


def apply_header(document, data, errors, end_field):
    """Copy dates, tax, discount, currency and notes from the payload.

    `end_field` is the closing date column ("due_date" for invoices,
    "valid_until" for estimates). It may not precede the issue date.
    """
    if "issue_date" in data:
        issue = parse_date(data.get("issue_date"), "issue_date", errors)
        if issue is not None:
            document.issue_date = issue
    if end_field in data:
        end = parse_date(data.get(end_field), end_field, errors)
        if end is not None:
            setattr(document, end_field, end)

    if "tax_rate" in data:
        rate = parse_amount(data.get("tax_rate"), "tax_rate", errors)
        if rate is not None:
            if rate > 100:
                errors["tax_rate"] = "Must be at most 100."
            else:
                document.tax_rate = rate
    if "discount_amount" in data:
        discount = parse_amount(data.get("discount_amount"), "discount_amount", errors)
        if discount is not None:
            document.discount_amount = discount
    if "currency" in data:
        currency = (data.get("currency") or "").strip().upper()
        if len(currency) != 3 or not currency.isalpha():
            errors["currency"] = "Use a three-letter currency code."
        else:
            document.currency = currency
    if "notes" in data:
        document.notes = clean_text(data.get("notes")) or None

    issue_date = document.issue_date or date.today()
    end_date = getattr(document, end_field)
    if end_date is not None and end_date < issue_date:
        errors[end_field] = "Cannot be before the issue date."


def build_line_items(item_model, items, errors):
    """Validate a list of line-item dicts into unsaved model instances."""
    if not isinstance(items, list) or not items:
        errors["line_items"] = "At least one line item is required."
        return []
    if len(items) > MAX_LINE_ITEMS:
        errors["line_items"] = f"At most {MAX_LINE_ITEMS} line items."
        return []

    built = []
    for position, raw in enumerate(items):
        prefix = f"line_items.{position}"
        if not isinstance(raw, dict):
            errors[prefix] = "Must be an object."
            continue
        description = clean_text(raw.get("description"))
        if not description:
            errors[f"{prefix}.description"] = "Description is required."
        quantity = parse_amount(
            raw.get("quantity", 1), f"{prefix}.quantity", errors, minimum=Decimal("0.01")
        )
        unit_price = parse_amount(raw.get("unit_price"), f"{prefix}.unit_price", errors)
        if unit_price is None and f"{prefix}.unit_price" not in errors:
            errors[f"{prefix}.unit_price"] = "Unit price is required."
        built.append(item_model(
            description=description,
            quantity=quantity,
            unit_price=unit_price,
            position=position,
        ))
    return built


def check_discount(document, errors):
    """A discount larger than the taxed subtotal would make the total negative."""
    if to_money(document.total_amount) < 0:
        errors["discount_amount"] = "Discount exceeds the document total."
