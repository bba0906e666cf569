"""ID generation utilities."""
import uuid


def generate_id() -> str:
    """Generate a unique ID."""
    return str(uuid.uuid4())


def generate_token() -> str:
    """Generate an opaque loop ownership token."""
    return uuid.uuid4().hex
