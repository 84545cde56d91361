"""Clients blueprint — /clients

CRUD over the current account's clients. Every lookup goes through the
tenant-scoped queries, so another account's client is a 404.
"""

from flask import Blueprint, g, jsonify, request
from flask_login import current_user

from billdesk.decorators import account_member_required
from billdesk.extensions import db
from billdesk.models.client import Client
from billdesk.policies import ClientPolicy, authorize
from billdesk.services import client_service, invoice_service
from billdesk.services.tenant_service import get_scoped_or_404
from billdesk.utils import conflict, json_body, paginate, unprocessable

clients_bp = Blueprint("clients", __name__, url_prefix="/clients")


def _policy(record=None):
    return ClientPolicy(current_user, g.membership, record)


@clients_bp.route("", methods=["GET"])
@account_member_required
def index():
    authorize(_policy(), "index")
    query = client_service.search_clients(
        g.account_id,
        q=request.args.get("q"),
        status=request.args.get("status"),
        sort=request.args.get("sort", "created_at"),
        direction=request.args.get("direction", "desc"),
    )
    return jsonify(ok=True, **paginate(query, lambda c: c.to_dict()))


@clients_bp.route("", methods=["POST"])
@account_member_required
def create():
    authorize(_policy(), "create")
    client, errors = client_service.create_client(g.account_id, json_body())
    if errors:
        return unprocessable(errors)
    db.session.commit()
    return jsonify(ok=True, client=client.to_dict()), 201


@clients_bp.route("/<client_id>", methods=["GET"])
@account_member_required
def show(client_id):
    client = get_scoped_or_404(Client, g.account_id, client_id)
    authorize(_policy(client), "show")
    data = client.to_dict()
    data["total_revenue"] = float(client.total_revenue())
    data["outstanding_balance"] = float(client.outstanding_balance())
    return jsonify(ok=True, client=data)


@clients_bp.route("/<client_id>/invoices", methods=["GET"])
@account_member_required
def invoices(client_id):
    client = get_scoped_or_404(Client, g.account_id, client_id)
    authorize(_policy(client), "invoices")
    query = invoice_service.search_invoices(g.account_id, client_id=client.id)
    return jsonify(ok=True, **paginate(query, lambda i: i.to_dict()))


@clients_bp.route("/<client_id>", methods=["PATCH"])
@account_member_required
def update(client_id):
    client = get_scoped_or_404(Client, g.account_id, client_id)
    authorize(_policy(client), "update")
    errors = client_service.update_client(client, json_body())
    if errors:
        return unprocessable(errors)
    db.session.commit()
    return jsonify(ok=True, client=client.to_dict())


@clients_bp.route("/<client_id>", methods=["DELETE"])
@account_member_required
def destroy(client_id):
    client = get_scoped_or_404(Client, g.account_id, client_id)
    authorize(_policy(client), "destroy")
    client_service.delete_client(client)
    db.session.commit()
    return jsonify(ok=True)


@clients_bp.errorhandler(ValueError)
def _invalid_state(e):
    return conflict(str(e))
