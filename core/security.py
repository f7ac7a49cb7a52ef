import hashlib
import hmac
import logging
from typing import Optional

from fastapi import Request

from domains.payment.errors import Unauthorized, UpstreamUnavailable

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-razorpay-signature"


def compute_signature(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def is_valid_signature(secret: str, body: bytes, signature: Optional[str]) -> bool:
    if not signature:
        return False
    # header 是 latin-1 解出來的字串，比 bytes 才不會遇到非 ASCII 就 TypeError
    return hmac.compare_digest(
        signature.encode("latin-1", errors="replace"),
        compute_signature(secret, body).encode(),
    )


async def verify_signature(request: Request) -> bytes:
    """
    Verify the Razorpay webhook signature (HMAC-SHA256 over the raw body)
    and hand the verified body to the route.
    """
    secret = request.app.state.settings.razorpay_webhook_secret
    if not secret:
        logger.error(" Webhook secret is not configured")
        raise UpstreamUnavailable("Webhook secret not configured")

    # 1. header signature
    signature = request.headers.get(SIGNATURE_HEADER)
    if not signature:
        logger.warning(f" {SIGNATURE_HEADER} header is missing")
        raise Unauthorized(f"{SIGNATURE_HEADER} header is required")

    # 2. body 要用原始 bytes 算，不能先 parse 成 JSON
    body_bytes = await request.body()

    # 3. compare
    if not is_valid_signature(secret, body_bytes, signature):
        logger.error(f" {SIGNATURE_HEADER} header is invalid")
        raise Unauthorized(f"{SIGNATURE_HEADER} header is invalid")
    return body_bytes
