"""Input sanitizing for free-text fields."""

import bleach


def clean_text(text):
    """Strip all HTML tags from user input."""
    if text is None:
        return text
    return bleach.clean(str(text), tags=[], strip=True).strip()
