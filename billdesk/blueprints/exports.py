"""Exports blueprint — POST /exports

Queues a personal data export for the current user. The export itself is
built by the export_data job; in eager mode (tests, local dev without a
broker) its result comes back in the response.
"""

import logging

from flask import Blueprint, g, jsonify
from flask_login import current_user

from billdesk import jobs
from billdesk.decorators import account_member_required
from billdesk.policies import ExportPolicy, authorize
from billdesk.services.export_service import SUPPORTED_EXPORT_TYPES
from billdesk.utils import json_body, unprocessable

logger = logging.getLogger(__name__)

exports_bp = Blueprint("exports", __name__, url_prefix="/exports")


@exports_bp.route("", methods=["POST"])
@account_member_required
def create():
    authorize(ExportPolicy(current_user, g.membership), "create")

    export_type = json_body().get("export_type")
    if export_type not in SUPPORTED_EXPORT_TYPES:
        return unprocessable({
            "export_type": f"Choose one of: {', '.join(SUPPORTED_EXPORT_TYPES)}."
        })

    async_result = jobs.export_data.delay(current_user.id, export_type)
    logger.info(f"Queued {export_type} export for user {current_user.id}")

    payload = {"ok": True, "task_id": async_result.id, "export_type": export_type}
    if async_result.ready():
        payload["result"] = async_result.result
    return jsonify(payload), 202
