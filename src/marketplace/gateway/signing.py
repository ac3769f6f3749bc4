"""HMAC helpers shared by the gateway adapters."""

import hashlib
import hmac
from collections.abc import Mapping


def hmac_sha256_hex(secret: str, message: bytes | str) -> str:
    if isinstance(message, str):
        message = message.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def signatures_match(expected: str, provided: str | None) -> bool:
    """Constant-time comparison of hex signatures."""
    if not provided:
        return False
    return hmac.compare_digest(expected.lower(), provided.strip().lower())


def canonical_param_string(params: Mapping, exclude: tuple[str, ...] = ("CHECKSUMHASH",)) -> str:
    """``k=v`` pairs sorted by key and joined with ``&``."""
    return "&".join(f"{key}={params[key]}" for key in sorted(params) if key not in exclude)


def param_checksum(params: Mapping, key: str) -> str:
    return hmac_sha256_hex(key, canonical_param_string(params))
