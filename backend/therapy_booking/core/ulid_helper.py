"""ULID generation helper utilities."""

import ulid


def generate_ulid() -> str:
    """Generate a new ULID string for rows inserted outside the ORM."""
    return str(ulid.ULID())
