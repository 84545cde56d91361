"""Small helpers shared by models, services and blueprints."""

import io
from datetime import datetime, timezone

from flask import abort, jsonify, request, send_file

from billdesk.extensions import db

DEFAULT_PER_PAGE = 25
MAX_PER_PAGE = 100


def utcnow():
    return datetime.now(timezone.utc)


def as_utc(value):
    """Normalize a datetime to aware UTC.

    SQLite returns naive datetimes; Postgres returns aware ones.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ──────────────────────────────────────────────
# JSON request/response helpers
# ──────────────────────────────────────────────

def json_body():
    """The request's JSON object, {} when empty. Anything else is a 400."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        abort(400, description="Request body must be a JSON object.")
    return data


def unprocessable(errors):
    """Discard pending changes and answer 422 with field errors."""
    db.session.rollback()
    return jsonify(ok=False, errors=errors), 422


def conflict(message):
    db.session.rollback()
    return jsonify(ok=False, error=message), 409


def paginate(query, serialize):
    """Page a query from ?page=&per_page= into a JSON-ready dict."""
    page = request.args.get("page", 1, type=int) or 1
    per_page = request.args.get("per_page", DEFAULT_PER_PAGE, type=int) or DEFAULT_PER_PAGE
    per_page = max(1, min(per_page, MAX_PER_PAGE))
    result = query.paginate(page=max(page, 1), per_page=per_page, error_out=False)
    return {
        "items": [serialize(item) for item in result.items],
        "page": result.page,
        "per_page": result.per_page,
        "total": result.total,
        "pages": result.pages,
    }


def pdf_response(result):
    """Send a PdfResult as an attachment, or a 500 carrying its error."""
    if not result.success:
        return jsonify(ok=False, error=result.error), 500
    return send_file(
        io.BytesIO(result.pdf),
        mimetype="application/pdf",
        as_attachment=True,
        download_name=result.filename,
    )
