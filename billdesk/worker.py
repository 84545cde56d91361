"""Celery worker entry point: `celery -A billdesk.worker.celery worker`."""

from dotenv import load_dotenv

load_dotenv()

from billdesk import create_app  # noqa: E402

app = create_app()
celery = app.extensions["celery"]
