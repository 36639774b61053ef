import hashlib
import hmac
import secrets
import string

import bcrypt

from core.settings import settings

_REFERENCE_ALPHABET = string.ascii_uppercase + string.digits


class SecurityGenerate:
    def contract_reference(self, year: int) -> str:
        suffix = "".join(secrets.choice(_REFERENCE_ALPHABET) for _ in range(5))
        return f"CTR-{year}-{suffix}"

    def payment_reference(self, prefix: str = "PAY") -> str:
        return f"{prefix}-{secrets.token_hex(6).upper()}"

    def generate_otp(self, length: int = 6) -> str:
        return f"{secrets.randbelow(10 ** length):0{length}d}"

    def hash_otp(self, code: str) -> str:
        salt = bcrypt.gensalt(rounds=settings.OTP_BCRYPT_ROUNDS)
        return bcrypt.hashpw(code.encode(), salt).decode()

    def check_otp(self, code: str, hashed: str | None) -> bool:
        if not hashed or not code:
            return False
        try:
            return bcrypt.checkpw(code.encode(), hashed.encode())
        except ValueError:
            return False

    def signing_token(self) -> str:
        return secrets.token_urlsafe(32)

    def job_token(self) -> str:
        return secrets.token_hex(16)

    def sha256(self, value: str | bytes) -> str:
        if isinstance(value, str):
            value = value.encode()
        return hashlib.sha256(value).hexdigest()

    def hmac_sha256(self, secret: str, body: bytes) -> str:
        return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


security_generate = SecurityGenerate()
