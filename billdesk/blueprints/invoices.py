"""Invoices blueprint — /invoices

Drafting, sending, payment recording, cancellation and PDF download for
the current account's invoices.
"""

from flask import Blueprint, g, jsonify, render_template, request
from flask_login import current_user

from billdesk.decorators import account_member_required
from billdesk.extensions import db
from billdesk.models.invoice import Invoice
from billdesk.policies import InvoicePolicy, authorize
from billdesk.services import invoice_service
from billdesk.services.pdf_service import generate_invoice_pdf
from billdesk.services.tenant_service import get_scoped_or_404
from billdesk.utils import conflict, json_body, paginate, pdf_response, unprocessable

invoices_bp = Blueprint("invoices", __name__, url_prefix="/invoices")


def _policy(record=None):
    return InvoicePolicy(current_user, g.membership, record)


def _load(invoice_id, action):
    invoice = get_scoped_or_404(Invoice, g.account_id, invoice_id)
    authorize(_policy(invoice), action)
    return invoice


# ──────────────────────────────────────────────
# Collection
# ──────────────────────────────────────────────

@invoices_bp.route("", methods=["GET"])
@account_member_required
def index():
    authorize(_policy(), "index")
    query = invoice_service.search_invoices(
        g.account_id,
        q=request.args.get("q"),
        status=request.args.get("status"),
        client_id=request.args.get("client_id"),
    )
    return jsonify(ok=True, **paginate(query, lambda i: i.to_dict()))


@invoices_bp.route("", methods=["POST"])
@account_member_required
def create():
    authorize(_policy(), "create")
    invoice, errors = invoice_service.create_invoice(
        g.account_id, json_body(), actor=current_user
    )
    if errors:
        return unprocessable(errors)
    db.session.commit()
    return jsonify(ok=True, invoice=invoice.to_dict(include_items=True)), 201


# ──────────────────────────────────────────────
# Member
# ──────────────────────────────────────────────

@invoices_bp.route("/<invoice_id>", methods=["GET"])
@account_member_required
def show(invoice_id):
    invoice = _load(invoice_id, "show")
    return jsonify(ok=True, invoice=invoice.to_dict(include_items=True))


@invoices_bp.route("/<invoice_id>", methods=["PATCH"])
@account_member_required
def update(invoice_id):
    invoice = _load(invoice_id, "update")
    errors = invoice_service.update_invoice(invoice, json_body())
    if errors:
        return unprocessable(errors)
    db.session.commit()
    return jsonify(ok=True, invoice=invoice.to_dict(include_items=True))


@invoices_bp.route("/<invoice_id>", methods=["DELETE"])
@account_member_required
def destroy(invoice_id):
    invoice = _load(invoice_id, "destroy")
    invoice_service.delete_invoice(invoice)
    db.session.commit()
    return jsonify(ok=True)


# ──────────────────────────────────────────────
# State changes
# ──────────────────────────────────────────────

@invoices_bp.route("/<invoice_id>/send", methods=["POST"])
@account_member_required
def send(invoice_id):
    invoice = _load(invoice_id, "send_invoice")
    invoice_service.send_invoice(invoice, actor=current_user)
    db.session.commit()
    return jsonify(ok=True, invoice=invoice.to_dict())


@invoices_bp.route("/<invoice_id>/mark-paid", methods=["POST"])
@account_member_required
def mark_paid(invoice_id):
    invoice = _load(invoice_id, "mark_paid")
    data = json_body()
    invoice_service.record_payment(
        invoice,
        payment_method=data.get("payment_method") or "manual",
        payment_reference=data.get("payment_reference"),
        actor=current_user,
    )
    db.session.commit()
    return jsonify(ok=True, invoice=invoice.to_dict())


@invoices_bp.route("/<invoice_id>/mark-cancelled", methods=["POST"])
@account_member_required
def mark_cancelled(invoice_id):
    invoice = _load(invoice_id, "mark_cancelled")
    invoice_service.cancel_invoice(invoice, actor=current_user)
    db.session.commit()
    return jsonify(ok=True, invoice=invoice.to_dict())


# ──────────────────────────────────────────────
# Rendering
# ──────────────────────────────────────────────

@invoices_bp.route("/<invoice_id>/preview", methods=["GET"])
@account_member_required
def preview(invoice_id):
    """The PDF's HTML, for in-browser preview."""
    invoice = _load(invoice_id, "preview")
    return render_template(
        "pdf/invoice.html",
        invoice=invoice,
        account=invoice.account,
        client=invoice.client,
        line_items=invoice.line_items,
    )


@invoices_bp.route("/<invoice_id>/pdf", methods=["GET"])
@account_member_required
def download(invoice_id):
    invoice = _load(invoice_id, "download")
    return pdf_response(generate_invoice_pdf(invoice))


@invoices_bp.errorhandler(ValueError)
def _invalid_state(e):
    return conflict(str(e))
