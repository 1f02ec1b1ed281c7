"""Content identifiers in the ledger's native encoding.

Keccak-256 (the pre-standard SHA-3 variant Ethereum uses, which is NOT
hashlib.sha3_256) over the canonical bytes, rendered as ``0x`` + 64
lowercase hex characters.  The same string is the database lookup key and
the value passed to the ledger's anchoring call.
"""

from __future__ import annotations

import hmac
import re

from web3 import Web3

from certvault.services.canonicalization import Identified, canonicalize

CONTENT_ID_PREFIX = "0x"
_CONTENT_ID_RE = re.compile(r"^0x[0-9a-f]{64}$")


def content_hash(data: bytes) -> str:
    digest = Web3.keccak(primitive=bytes(data))
    return CONTENT_ID_PREFIX + bytes(digest).hex()


def certificate_hash(record: Identified) -> str:
    return content_hash(canonicalize(record))


def is_content_id(value: str) -> bool:
    return bool(_CONTENT_ID_RE.match(value))


def verify_certificate_hash(record: Identified, declared: str) -> bool:
    """Recompute the hash from the record's fields and compare in constant time."""
    return hmac.compare_digest(certificate_hash(record), declared.lower())
