"""Client service — CRUD and search for an account's clients.

Functions flush but do NOT commit — the caller commits.
"""

import logging
import re

from billdesk.extensions import db
from billdesk.models.client import Client
from billdesk.services.sanitize import clean_text
from billdesk.services.tenant_service import scoped

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
EDITABLE_FIELDS = ("name", "email", "company", "phone", "address")
SORTABLE_FIELDS = {
    "name": Client.name,
    "email": Client.email,
    "company": Client.company,
    "created_at": Client.created_at,
}


def _clean(data):
    cleaned = {}
    for field in EDITABLE_FIELDS:
        if field in data:
            cleaned[field] = clean_text(data.get(field)) or None
    if cleaned.get("email"):
        cleaned["email"] = cleaned["email"].lower()
    return cleaned


def _validate(account_id, values, exclude_id=None):
    errors = {}
    if not values.get("name"):
        errors["name"] = "Name is required."
    email = values.get("email")
    if not email:
        errors["email"] = "Email is required."
    elif not EMAIL_RE.match(email):
        errors["email"] = "Email is invalid."
    else:
        query = scoped(Client, account_id).filter(Client.email == email)
        if exclude_id:
            query = query.filter(Client.id != exclude_id)
        if query.first() is not None:
            errors["email"] = "A client with this email already exists."
    return errors


def search_clients(account_id, q=None, status=None, sort="created_at", direction="desc"):
    """Tenant-scoped client query with optional text search, status filter and sort."""
    query = scoped(Client, account_id)
    if q:
        pattern = f"%{q.strip()}%"
        query = query.filter(
            db.or_(
                Client.name.ilike(pattern),
                Client.email.ilike(pattern),
                Client.company.ilike(pattern),
            )
        )
    if status in Client.STATUSES:
        query = query.filter(Client.status == status)

    column = SORTABLE_FIELDS.get(sort, Client.created_at)
    return query.order_by(column.asc() if direction == "asc" else column.desc())


def create_client(account_id, data):
    """Create a client in the account.

    Returns:
        tuple: (client, errors)
    """
    values = _clean(data)
    errors = _validate(account_id, values)
    if errors:
        return None, errors

    client = Client(account_id=account_id, **values)
    db.session.add(client)
    db.session.flush()
    logger.info(f"Created client {client.id} in account {account_id}")
    return client, None


def update_client(client, data):
    """Apply editable fields and status. Returns field errors or None."""
    values = _clean(data)
    merged = {field: getattr(client, field) for field in EDITABLE_FIELDS}
    merged.update(values)
    errors = _validate(client.account_id, merged, exclude_id=client.id)

    status = data.get("status")
    if status is not None and status not in Client.STATUSES:
        errors["status"] = "Unknown status."
    if errors:
        return errors

    for field, value in values.items():
        setattr(client, field, value)
    if status is not None:
        client.status = status
    db.session.flush()
    return None


def delete_client(client):
    """Delete a client with no invoices or estimates.

    Raises:
        ValueError: If the client still has documents.
    """
    if client.invoices.count() or client.estimates.count():
        raise ValueError("Cannot delete a client with existing invoices or estimates.")
    db.session.delete(client)
    db.session.flush()
    logger.info(f"Deleted client {client.id}")
