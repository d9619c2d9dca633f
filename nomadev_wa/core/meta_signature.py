import hmac
import hashlib


def verify_meta_signature(signature_header: str, raw_body: bytes, app_secret: str) -> bool:
    """
    Valida X-Hub-Signature-256 ("sha256=<hex>") = HMAC-SHA256(app_secret, body).
    """
    if not signature_header or not app_secret:
        return False

    algo, _, received = signature_header.strip().partition("=")
    if algo.lower() != "sha256" or not received:
        return False

    expected = hmac.new(app_secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()

    return hmac.compare_digest(expected, received.lower())
