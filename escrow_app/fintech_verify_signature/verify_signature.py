import hashlib
import hmac


def verify_hmac_sha256(secret: str | None, body: bytes, signature: str | None) -> bool:
    if not signature or not secret:
        return False

    expected = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    candidate = signature.strip().lower()
    if candidate.startswith("sha256="):
        candidate = candidate[len("sha256="):]

    return hmac.compare_digest(expected, candidate)
