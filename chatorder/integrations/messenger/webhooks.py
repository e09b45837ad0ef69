"""Facebook webhook signature verification."""

import hashlib
import hmac


def verify_signature(data: bytes, signature_header: str, secret: str) -> bool:
    """Verify a Facebook webhook's X-Hub-Signature-256 header.

    Args:
        data: The raw request body bytes.
        signature_header: The header value, ``sha256=<hex digest>``.
        secret: The Facebook app secret.

    Returns:
        True if the signature is valid.
    """
    if not signature_header or not signature_header.startswith("sha256="):
        return False

    computed = hmac.new(
        secret.encode("utf-8"),
        data,
        hashlib.sha256,
    ).hexdigest()

    return hmac.compare_digest(computed, signature_header.removeprefix("sha256="))
