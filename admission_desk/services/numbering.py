import secrets
from datetime import datetime, timezone


def _number(prefix: str, digits: int) -> str:
    year = datetime.now(timezone.utc).year
    low = 10 ** (digits - 1)
    return f"{prefix}{year}{low + secrets.randbelow(9 * low)}"


def generate_application_number(prefix: str = "DMPS") -> str:
    """e.g. DMPS20264821. Uniqueness is left to the store's unique index."""
    return _number(prefix, 4)


def generate_admission_number(prefix: str = "ADM") -> str:
    """e.g. ADM202648213"""
    return _number(prefix, 5)


def current_academic_year() -> str:
    year = datetime.now(timezone.utc).year
    return f"{year}-{year + 1}"
