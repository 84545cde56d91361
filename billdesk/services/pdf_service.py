"""PDF service — renders invoices and estimates to PDF.

Documents are rendered from Jinja templates under templates/pdf/ and
printed by headless Chromium (Playwright) on US Letter with half-inch
margins and background graphics.

Nothing here raises: every failure comes back as a PdfResult with
success=False and a human-readable error, and is logged.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from flask import current_app, render_template
from playwright.sync_api import sync_playwright
from sqlalchemy import inspect

logger = logging.getLogger(__name__)

DEFAULT_PDF_OPTIONS = {
    "format": "Letter",
    "print_background": True,
    "prefer_css_page_size": True,
    "margin": {
        "top": "0.5in",
        "right": "0.5in",
        "bottom": "0.5in",
        "left": "0.5in",
    },
}


@dataclass
class PdfResult:
    success: bool
    pdf: Optional[bytes] = None
    filename: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, pdf, filename):
        return cls(success=True, pdf=pdf, filename=filename)

    @classmethod
    def failure(cls, error):
        return cls(success=False, error=error)


def html_to_pdf(html, options=None):
    """Print an HTML document to PDF bytes with headless Chromium.

    Waits for network idle so web fonts and images are in before printing.
    Raises playwright errors; callers convert them to a PdfResult.
    """
    pdf_options = dict(DEFAULT_PDF_OPTIONS)
    pdf_options.update(options or {})
    timeout = current_app.config.get("PDF_BROWSER_TIMEOUT_MS", 30000)

    with sync_playwright() as p:
        browser = p.chromium.launch(args=["--no-sandbox", "--disable-dev-shm-usage"])
        try:
            page = browser.new_page()
            page.set_default_timeout(timeout)
            page.emulate_media(media="print")
            page.set_content(html, wait_until="networkidle")
            return page.pdf(**pdf_options)
        finally:
            browser.close()


def _is_persisted(record):
    return record is not None and inspect(record).has_identity


def _render_document(record, template, filename, label, context):
    if record is None:
        return PdfResult.failure(f"{label} not found")
    if not _is_persisted(record):
        return PdfResult.failure(f"{label} must be saved before generating a PDF")

    try:
        html = render_template(template, **context)
        pdf = html_to_pdf(html)
    except Exception as e:
        logger.error(f"PDF generation failed for {filename}: {e}", exc_info=True)
        return PdfResult.failure(f"PDF generation failed: {e}")

    logger.info(f"Generated {filename} ({len(pdf)} bytes)")
    return PdfResult.ok(pdf, filename)


def generate_invoice_pdf(invoice):
    """Render an invoice to PDF. Filename: Invoice-<number>.pdf."""
    if invoice is None:
        return PdfResult.failure("Invoice not found")
    return _render_document(
        invoice,
        "pdf/invoice.html",
        f"Invoice-{invoice.invoice_number}.pdf",
        "Invoice",
        {
            "invoice": invoice,
            "account": invoice.account,
            "client": invoice.client,
            "line_items": invoice.line_items,
        },
    )


def generate_estimate_pdf(estimate):
    """Render an estimate to PDF. Filename: Estimate-<number>.pdf."""
    if estimate is None:
        return PdfResult.failure("Estimate not found")
    return _render_document(
        estimate,
        "pdf/estimate.html",
        f"Estimate-{estimate.estimate_number}.pdf",
        "Estimate",
        {
            "estimate": estimate,
            "account": estimate.account,
            "client": estimate.client,
            "line_items": estimate.line_items,
        },
    )
