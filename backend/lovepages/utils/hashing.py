"""
Hashing Utilities — SHA-256 payload hashing for the audit trail and
HMAC helpers for bearer tokens and webhook signatures.
"""
import hashlib
import hmac
import json


def generate_hash(data: dict) -> str:
    """SHA-256 of a dictionary (deterministic, sorted keys; Decimals and dates via str)."""
    canonical = json.dumps(data, sort_keys=True, default=str).encode("utf-8")
    return hashlib.sha256(canonical).hexdigest()


def generate_chain_hash(current_data: dict, previous_hash: str = "") -> str:
    """SHA-256(previous_hash + hash(current_payload)), linking audit entries per user."""
    current_hash = generate_hash(current_data)
    chain_input = f"{previous_hash}{current_hash}".encode("utf-8")
    return hashlib.sha256(chain_input).hexdigest()


def hmac_sha256_hex(secret: str, message: str) -> str:
    return hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


def signatures_match(expected: str, received: str) -> bool:
    """Constant-time comparison of two hex signatures."""
    if not expected or not received:
        return False
    return hmac.compare_digest(expected.strip().lower(), received.strip().lower())
