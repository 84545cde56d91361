"""Estimates blueprint — /estimates

Quotes for clients: drafting, sending, the client's accept/decline
decision, and conversion of an accepted estimate into a draft invoice.
"""

from flask import Blueprint, g, jsonify, request
from flask_login import current_user

from billdesk.decorators import account_member_required
from billdesk.extensions import db
from billdesk.models.estimate import Estimate
from billdesk.policies import EstimatePolicy, authorize
from billdesk.services import estimate_service
from billdesk.services.pdf_service import generate_estimate_pdf
from billdesk.services.tenant_service import get_scoped_or_404
from billdesk.utils import conflict, json_body, paginate, pdf_response, unprocessable

estimates_bp = Blueprint("estimates", __name__, url_prefix="/estimates")


def _policy(record=None):
    return EstimatePolicy(current_user, g.membership, record)


def _load(estimate_id, action):
    estimate = get_scoped_or_404(Estimate, g.account_id, estimate_id)
    authorize(_policy(estimate), action)
    return estimate


@estimates_bp.route("", methods=["GET"])
@account_member_required
def index():
    authorize(_policy(), "index")
    query = estimate_service.search_estimates(
        g.account_id,
        q=request.args.get("q"),
        status=request.args.get("status"),
        client_id=request.args.get("client_id"),
    )
    return jsonify(ok=True, **paginate(query, lambda e: e.to_dict()))


@estimates_bp.route("", methods=["POST"])
@account_member_required
def create():
    authorize(_policy(), "create")
    estimate, errors = estimate_service.create_estimate(
        g.account_id, json_body(), actor=current_user
    )
    if errors:
        return unprocessable(errors)
    db.session.commit()
    return jsonify(ok=True, estimate=estimate.to_dict(include_items=True)), 201


@estimates_bp.route("/<estimate_id>", methods=["GET"])
@account_member_required
def show(estimate_id):
    estimate = _load(estimate_id, "show")
    return jsonify(ok=True, estimate=estimate.to_dict(include_items=True))


@estimates_bp.route("/<estimate_id>", methods=["PATCH"])
@account_member_required
def update(estimate_id):
    estimate = _load(estimate_id, "update")
    errors = estimate_service.update_estimate(estimate, json_body())
    if errors:
        return unprocessable(errors)
    db.session.commit()
    return jsonify(ok=True, estimate=estimate.to_dict(include_items=True))


@estimates_bp.route("/<estimate_id>", methods=["DELETE"])
@account_member_required
def destroy(estimate_id):
    estimate = _load(estimate_id, "destroy")
    estimate_service.delete_estimate(estimate)
    db.session.commit()
    return jsonify(ok=True)


@estimates_bp.route("/<estimate_id>/send", methods=["POST"])
@account_member_required
def send(estimate_id):
    estimate = _load(estimate_id, "send_estimate")
    estimate_service.send_estimate(estimate, actor=current_user)
    db.session.commit()
    return jsonify(ok=True, estimate=estimate.to_dict())


@estimates_bp.route("/<estimate_id>/accept", methods=["POST"])
@account_member_required
def accept(estimate_id):
    estimate = _load(estimate_id, "accept")
    estimate_service.accept_estimate(estimate, actor=current_user)
    db.session.commit()
    return jsonify(ok=True, estimate=estimate.to_dict())


@estimates_bp.route("/<estimate_id>/decline", methods=["POST"])
@account_member_required
def decline(estimate_id):
    estimate = _load(estimate_id, "decline")
    estimate_service.decline_estimate(estimate, actor=current_user)
    db.session.commit()
    return jsonify(ok=True, estimate=estimate.to_dict())


@estimates_bp.route("/<estimate_id>/convert", methods=["POST"])
@account_member_required
def convert(estimate_id):
    """Turn an accepted estimate into a draft invoice."""
    estimate = _load(estimate_id, "convert")
    invoice = estimate_service.convert_to_invoice(estimate, actor=current_user)
    db.session.commit()
    return jsonify(
        ok=True,
        estimate=estimate.to_dict(),
        invoice=invoice.to_dict(include_items=True),
    ), 201


@estimates_bp.route("/<estimate_id>/pdf", methods=["GET"])
@account_member_required
def download(estimate_id):
    estimate = _load(estimate_id, "download")
    return pdf_response(generate_estimate_pdf(estimate))


@estimates_bp.errorhandler(ValueError)
def _invalid_state(e):
    return conflict(str(e))
