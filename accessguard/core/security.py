from __future__ import annotations

import base64
import hashlib
import hmac
import re
import secrets


_PBKDF2_ALG = "pbkdf2_sha256"
_PBKDF2_HASH_NAME = "sha256"
_PBKDF2_ITERATIONS = 200_000
_PBKDF2_SALT_BYTES = 16

API_SECRET_ENVIRONMENTS = ("live", "test")
API_SECRET_RE = re.compile(r"^iso_(live|test)_sk_[A-Za-z0-9]{32,}$")
_API_SECRET_RANDOM_BYTES = 24  # 48 hex chars

SECRET_PREFIX_LEN = 20


def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64url_decode(data: str) -> bytes:
    if data == "":
        raise ValueError("invalid base64 input")
    padded = data + "=" * ((4 - (len(data) % 4)) % 4)
    try:
        return base64.urlsafe_b64decode(padded.encode("ascii"))
    except Exception as exc:
        raise ValueError("invalid base64 input") from exc


def generate_api_secret(environment: str = "live") -> str:
    env = environment if environment in API_SECRET_ENVIRONMENTS else "live"
    return f"iso_{env}_sk_{secrets.token_hex(_API_SECRET_RANDOM_BYTES)}"


def is_well_formed_secret(secret: str) -> bool:
    return API_SECRET_RE.match(secret) is not None


def secret_prefix(secret: str) -> str:
    """Truncated form of a presented secret that is safe to persist in audit rows."""
    return secret[:SECRET_PREFIX_LEN] + "..."


def hash_api_secret(secret: str) -> str:
    if secret == "":
        raise ValueError("secret must be a non-empty string")

    salt = secrets.token_bytes(_PBKDF2_SALT_BYTES)
    dk = hashlib.pbkdf2_hmac(
        _PBKDF2_HASH_NAME,
        secret.encode("utf-8"),
        salt,
        _PBKDF2_ITERATIONS,
        dklen=32,
    )
    return f"{_PBKDF2_ALG}${_PBKDF2_ITERATIONS}${_b64url_encode(salt)}${_b64url_encode(dk)}"


def verify_api_secret(secret: str, stored: str) -> bool:
    try:
        alg, iterations_s, salt_s, hash_s = stored.split("$", 3)
        if alg != _PBKDF2_ALG:
            return False
        iterations = int(iterations_s)
        if iterations <= 0:
            return False
        salt = _b64url_decode(salt_s)
        expected = _b64url_decode(hash_s)
    except Exception:
        return False

    try:
        actual = hashlib.pbkdf2_hmac(
            _PBKDF2_HASH_NAME,
            secret.encode("utf-8"),
            salt,
            iterations,
            dklen=len(expected),
        )
    except Exception:
        return False

    return hmac.compare_digest(actual, expected)
