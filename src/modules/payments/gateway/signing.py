"""Callback signature: HMAC-SHA256 over ``"<order_id>|<payment_id>"``."""

from __future__ import annotations

import hashlib
import hmac


def sign(secret: str, order_id: str, payment_id: str) -> str:
    message = f"{order_id}|{payment_id}".encode()
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def signature_matches(secret: str, order_id: str, payment_id: str, signature: str) -> bool:
    if not secret or not signature:
        return False
    return hmac.compare_digest(sign(secret, order_id, payment_id), signature)
