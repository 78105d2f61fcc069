from lovepages.utils.hashing import generate_hash, generate_chain_hash, hmac_sha256_hex, signatures_match
from lovepages.utils.locks import KeyedLock
from lovepages.utils.logger import get_logger

__all__ = [
    "generate_hash", "generate_chain_hash", "hmac_sha256_hex", "signatures_match",
    "KeyedLock", "get_logger",
]
