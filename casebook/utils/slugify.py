import re
import secrets
import string

_ALPHABET = string.digits + string.ascii_lowercase


def generate_slug(name: str) -> str:
    """URL slug for a case: normalized name plus a random 6-character suffix."""
    base = name.lower().strip()
    base = re.sub(r"[^\w\s-]", "", base)
    base = re.sub(r"[\s_-]+", "-", base)
    base = base.strip("-")
    suffix = "".join(secrets.choice(_ALPHABET) for _ in range(6))
    return f"{base}-{suffix}" if base else suffix
