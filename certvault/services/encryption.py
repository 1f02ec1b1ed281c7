"""Password-derived authenticated encryption for certificate payloads.

WHAT GETS PROTECTED
--------------------
The full certificate payload lives in an external, content-addressed blob
store that anyone with the content id can read.  The engine makes that
payload useless without the per-record secret and makes any modification
of it detectable:

  1. KEY DERIVATION -- PBKDF2-HMAC-SHA256 (default, >= 100k iterations) or
     Argon2id stretches the secret with a fresh 256-bit salt per record.
  2. AEAD -- AES-256-GCM encrypts and authenticates in one pass.  The
     16-byte tag covers the ciphertext AND the associated data.
  3. ASSOCIATED DATA -- certificate id, recipient, institution and a
     timestamp travel in clear next to the ciphertext but are bound into
     the tag.  Moving a ciphertext onto another record's metadata breaks
     the tag.

NONCE DISCIPLINE
-----------------
GCM is catastrophically broken by nonce reuse under one key.  ``encrypt``
draws a fresh 96-bit nonce from ``secrets`` on every call and offers no
parameter to pass one in.

SELF-DESCRIBING ENVELOPES
--------------------------
``encrypt_certificate`` returns the ciphertext together with salt, KDF
name and cost parameters, so decryption needs nothing but the password.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import re
import secrets
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from argon2.low_level import Type as Argon2Type
from argon2.low_level import hash_secret_raw
from cryptography.exceptions import InvalidSignature, InvalidTag
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from certvault.core.config import MIN_KDF_ITERATIONS
from certvault.core.errors import IntegrityError, ValidationError
from certvault.core.metrics import INTEGRITY_FAILURES
from certvault.models.certificate import utcnow

logger = logging.getLogger(__name__)

ALGORITHM = "aes-256-gcm"
KEY_LENGTH = 32
IV_LENGTH = 12
TAG_LENGTH = 16
SALT_LENGTH = 32

KDF_PBKDF2 = "pbkdf2-sha256"
KDF_ARGON2ID = "argon2id"

# Argon2id cost: time_cost is carried in the envelope's "iterations" slot.
ARGON2_TIME_COST = 3
ARGON2_MEMORY_COST_KIB = 64 * 1024
ARGON2_PARALLELISM = 4

# Stored envelopes may ask for at most this multiple of the configured work
# factor before a key is derived from them.
MAX_WORK_FACTOR = 10

PASSWORD_CHARSET = (
    "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789!@#$%^&*"
)
MIN_GENERATED_PASSWORD_LENGTH = 16

_SPECIAL_RE = re.compile(r"[!@#$%^&*(),.?\":{}|<>]")


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _unb64(value: Any, name: str) -> bytes:
    if not isinstance(value, str):
        raise ValidationError(f"envelope field {name!r} must be a base64 string")
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        raise ValidationError(f"envelope field {name!r} is not valid base64") from None


@dataclass(frozen=True, slots=True)
class EncryptedPayload:
    ciphertext: bytes
    iv: bytes
    auth_tag: bytes
    algorithm: str = ALGORITHM
    associated_data: bytes | None = None


@dataclass(frozen=True, slots=True)
class CertificateEnvelope:
    """Encrypted payload plus the key-derivation parameters that produced its key."""

    payload: EncryptedPayload
    salt: bytes
    iterations: int
    kdf: str = KDF_PBKDF2
    hash_function: str = "sha256"

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "encrypted": _b64(self.payload.ciphertext),
            "iv": _b64(self.payload.iv),
            "tag": _b64(self.payload.auth_tag),
            "algorithm": self.payload.algorithm,
            "salt": _b64(self.salt),
            "iterations": self.iterations,
            "keyDerivation": self.kdf,
            "hashFunction": self.hash_function,
        }
        if self.payload.associated_data is not None:
            out["aad"] = self.payload.associated_data.decode("utf-8")
        return out

    def to_bytes(self) -> bytes:
        return json.dumps(self.to_dict(), sort_keys=True).encode("utf-8")

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> CertificateEnvelope:
        iterations = data.get("iterations", MIN_KDF_ITERATIONS)
        if not isinstance(iterations, int) or isinstance(iterations, bool):
            raise ValidationError("envelope field 'iterations' must be an integer")
        aad = data.get("aad")
        if aad is not None and not isinstance(aad, str):
            raise ValidationError("envelope field 'aad' must be a string")
        payload = EncryptedPayload(
            ciphertext=_unb64(data.get("encrypted"), "encrypted"),
            iv=_unb64(data.get("iv"), "iv"),
            auth_tag=_unb64(data.get("tag"), "tag"),
            algorithm=str(data.get("algorithm", ALGORITHM)),
            associated_data=aad.encode("utf-8") if aad is not None else None,
        )
        return CertificateEnvelope(
            payload=payload,
            salt=_unb64(data.get("salt"), "salt"),
            iterations=iterations,
            kdf=str(data.get("keyDerivation", KDF_PBKDF2)),
            hash_function=str(data.get("hashFunction", "sha256")),
        )

    @staticmethod
    def from_bytes(raw: bytes) -> CertificateEnvelope:
        try:
            data = json.loads(raw)
        except (UnicodeDecodeError, json.JSONDecodeError):
            raise ValidationError("envelope is not valid JSON") from None
        if not isinstance(data, dict):
            raise ValidationError("envelope must be a JSON object")
        return CertificateEnvelope.from_dict(data)


@dataclass(frozen=True, slots=True)
class KeyStrength:
    is_valid: bool
    length: bool
    has_upper_case: bool
    has_lower_case: bool
    has_numbers: bool
    has_special_char: bool
    score: int
    level: str  # weak|medium|strong


@dataclass(frozen=True, slots=True)
class KeyPair:
    public_key: str
    private_key: str


class EncryptionEngine:
    """Constructed once at startup and handed to the services that need it."""

    def __init__(
        self,
        *,
        iterations: int = MIN_KDF_ITERATIONS,
        kdf: str = KDF_PBKDF2,
    ) -> None:
        if kdf not in (KDF_PBKDF2, KDF_ARGON2ID):
            raise ValueError(f"unsupported key derivation: {kdf!r}")
        if kdf == KDF_PBKDF2 and iterations < MIN_KDF_ITERATIONS:
            raise ValueError(f"iterations must be >= {MIN_KDF_ITERATIONS}")
        self.kdf = kdf
        self.iterations = iterations if kdf == KDF_PBKDF2 else ARGON2_TIME_COST

    def work_limit(self, kdf: str) -> int:
        """Highest iteration count (or argon2id time cost) accepted from an envelope."""
        if kdf == KDF_ARGON2ID:
            return ARGON2_TIME_COST * MAX_WORK_FACTOR
        configured = self.iterations if self.kdf == KDF_PBKDF2 else MIN_KDF_ITERATIONS
        return configured * MAX_WORK_FACTOR

    # ------------------------------------------------------------------
    # Key derivation
    # ------------------------------------------------------------------

    def derive_key(
        self,
        password: str,
        salt: bytes,
        iterations: int,
        *,
        kdf: str | None = None,
    ) -> bytes:
        """Same (password, salt, iterations, kdf) always yields the same 32-byte key."""
        kdf = kdf or self.kdf
        if not password:
            raise ValidationError("password must be non-empty")
        if len(salt) < SALT_LENGTH:
            raise ValidationError(f"salt must be at least {SALT_LENGTH} bytes")

        secret = password.encode("utf-8")
        if kdf == KDF_PBKDF2:
            if iterations < MIN_KDF_ITERATIONS:
                raise ValidationError(
                    f"iterations must be >= {MIN_KDF_ITERATIONS} (got {iterations})"
                )
            return PBKDF2HMAC(
                algorithm=hashes.SHA256(),
                length=KEY_LENGTH,
                salt=salt,
                iterations=iterations,
            ).derive(secret)
        if kdf == KDF_ARGON2ID:
            if iterations < 1:
                raise ValidationError("argon2id time cost must be positive")
            return hash_secret_raw(
                secret=secret,
                salt=salt,
                time_cost=iterations,
                memory_cost=ARGON2_MEMORY_COST_KIB,
                parallelism=ARGON2_PARALLELISM,
                hash_len=KEY_LENGTH,
                type=Argon2Type.ID,
            )
        raise ValidationError(f"unsupported key derivation: {kdf!r}")

    # ------------------------------------------------------------------
    # AEAD
    # ------------------------------------------------------------------

    def encrypt(
        self,
        plaintext: bytes,
        key: bytes,
        associated_data: bytes | None = None,
    ) -> EncryptedPayload:
        if len(key) != KEY_LENGTH:
            raise ValidationError(f"key must be {KEY_LENGTH} bytes")
        iv = secrets.token_bytes(IV_LENGTH)
        sealed = AESGCM(key).encrypt(iv, plaintext, associated_data)
        logger.debug("Encrypted %d bytes", len(plaintext))
        return EncryptedPayload(
            ciphertext=sealed[:-TAG_LENGTH],
            iv=iv,
            auth_tag=sealed[-TAG_LENGTH:],
            algorithm=ALGORITHM,
            associated_data=associated_data,
        )

    def decrypt(self, payload: EncryptedPayload, key: bytes) -> bytes:
        """Return the plaintext, or raise IntegrityError. Never returns altered data."""
        if payload.algorithm != ALGORITHM:
            raise ValidationError(f"unsupported algorithm: {payload.algorithm!r}")
        if len(key) != KEY_LENGTH:
            raise ValidationError(f"key must be {KEY_LENGTH} bytes")
        if len(payload.auth_tag) != TAG_LENGTH:
            INTEGRITY_FAILURES.inc()
            raise IntegrityError("authentication tag has the wrong length")
        try:
            return AESGCM(key).decrypt(
                payload.iv,
                payload.ciphertext + payload.auth_tag,
                payload.associated_data,
            )
        except (InvalidTag, ValueError):
            INTEGRITY_FAILURES.inc()
            logger.warning("Authenticated decryption failed")
            raise IntegrityError(
                "decryption failed: invalid key or corrupted data"
            ) from None

    # ------------------------------------------------------------------
    # Record-level convenience
    # ------------------------------------------------------------------

    def _new_envelope(
        self, plaintext: bytes, password: str, associated_data: bytes | None
    ) -> CertificateEnvelope:
        salt = secrets.token_bytes(SALT_LENGTH)
        key = self.derive_key(password, salt, self.iterations)
        return CertificateEnvelope(
            payload=self.encrypt(plaintext, key, associated_data),
            salt=salt,
            iterations=self.iterations,
            kdf=self.kdf,
        )

    def _open_envelope(self, envelope: CertificateEnvelope, password: str) -> bytes:
        limit = self.work_limit(envelope.kdf)
        if envelope.iterations > limit:
            raise ValidationError(
                f"envelope work factor {envelope.iterations} exceeds the limit of {limit}"
            )
        key = self.derive_key(
            password, envelope.salt, envelope.iterations, kdf=envelope.kdf
        )
        return self.decrypt(envelope.payload, key)

    def encrypt_certificate(
        self, certificate: Mapping[str, Any], password: str
    ) -> CertificateEnvelope:
        """Encrypt a JSON-safe certificate payload under a password-derived key.

        The payload must carry ``certificateId``, ``recipient.name`` and
        ``institution.name``; they are bound into the tag as associated data.
        """
        try:
            aad = {
                "certificateId": certificate["certificateId"],
                "recipient": certificate["recipient"]["name"],
                "institution": certificate["institution"]["name"],
                "timestamp": utcnow().isoformat(),
            }
        except (KeyError, TypeError):
            raise ValidationError(
                "certificate payload needs certificateId, recipient.name and institution.name"
            ) from None

        plaintext = json.dumps(
            dict(certificate), sort_keys=True, separators=(",", ":"), ensure_ascii=False
        ).encode("utf-8")
        associated = json.dumps(aad, sort_keys=True, separators=(",", ":")).encode(
            "utf-8"
        )
        return self._new_envelope(plaintext, password, associated)

    def decrypt_certificate(
        self,
        envelope: CertificateEnvelope,
        password: str,
        *,
        expected_certificate_id: str | None = None,
    ) -> dict[str, Any]:
        """Inverse of ``encrypt_certificate``.

        When ``expected_certificate_id`` is given, the authenticated
        associated data must name that certificate, otherwise the envelope
        was taken from another record and IntegrityError is raised.
        """
        plaintext = self._open_envelope(envelope, password)

        if expected_certificate_id is not None:
            bound_id = None
            if envelope.payload.associated_data is not None:
                try:
                    bound = json.loads(envelope.payload.associated_data)
                except (UnicodeDecodeError, json.JSONDecodeError):
                    bound = None
                if isinstance(bound, dict):
                    bound_id = bound.get("certificateId")
            if bound_id != expected_certificate_id:
                INTEGRITY_FAILURES.inc()
                raise IntegrityError("envelope is bound to a different certificate")

        try:
            data = json.loads(plaintext)
        except (UnicodeDecodeError, json.JSONDecodeError):
            raise ValidationError("decrypted payload is not a JSON document") from None
        if not isinstance(data, dict):
            raise ValidationError("decrypted payload is not a JSON object")
        return data

    def encrypt_file(self, data: bytes, password: str) -> CertificateEnvelope:
        return self._new_envelope(data, password, None)

    def decrypt_file(self, envelope: CertificateEnvelope, password: str) -> bytes:
        return self._open_envelope(envelope, password)

    # ------------------------------------------------------------------
    # Secrets
    # ------------------------------------------------------------------

    @staticmethod
    def generate_secure_password(length: int = 32) -> str:
        if length < MIN_GENERATED_PASSWORD_LENGTH:
            raise ValidationError(
                f"generated passwords must be at least {MIN_GENERATED_PASSWORD_LENGTH} characters"
            )
        return "".join(secrets.choice(PASSWORD_CHARSET) for _ in range(length))

    @staticmethod
    def validate_key_strength(password: str) -> KeyStrength:
        long_enough = len(password) >= 8
        upper = any(c.isascii() and c.isupper() for c in password)
        lower = any(c.isascii() and c.islower() for c in password)
        digits = any(c.isdigit() for c in password)
        special = bool(_SPECIAL_RE.search(password))

        score = (
            (25 if long_enough else 0)
            + (20 if upper else 0)
            + (20 if lower else 0)
            + (20 if digits else 0)
            + (15 if special else 0)
        )
        if score >= 80:
            level = "strong"
        elif score >= 60:
            level = "medium"
        else:
            level = "weak"

        return KeyStrength(
            is_valid=long_enough,
            length=long_enough,
            has_upper_case=upper,
            has_lower_case=lower,
            has_numbers=digits,
            has_special_char=special,
            score=score,
            level=level,
        )

    # ------------------------------------------------------------------
    # Signatures (RSA-PSS over canonical JSON)
    # ------------------------------------------------------------------

    @staticmethod
    def generate_key_pair(key_size: int = 2048) -> KeyPair:
        private_key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
        private_pem = private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
        public_pem = private_key.public_key().public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        logger.info("RSA key pair generated  key_size=%d", key_size)
        return KeyPair(public_key=public_pem.decode(), private_key=private_pem.decode())

    @staticmethod
    def _signing_bytes(data: Any) -> bytes:
        return json.dumps(
            data, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str
        ).encode("utf-8")

    def sign_data(self, data: Any, private_key_pem: str) -> str:
        try:
            key = serialization.load_pem_private_key(
                private_key_pem.encode(), password=None
            )
        except (ValueError, TypeError):
            raise ValidationError("private key is not a valid PEM key") from None
        if not isinstance(key, rsa.RSAPrivateKey):
            raise ValidationError("private key must be an RSA key")
        signature = key.sign(
            self._signing_bytes(data),
            padding.PSS(mgf=padding.MGF1(hashes.SHA256()), salt_length=padding.PSS.MAX_LENGTH),
            hashes.SHA256(),
        )
        return _b64(signature)

    def verify_signature(self, data: Any, signature: str, public_key_pem: str) -> bool:
        try:
            key = serialization.load_pem_public_key(public_key_pem.encode())
        except (ValueError, TypeError):
            raise ValidationError("public key is not a valid PEM key") from None
        if not isinstance(key, rsa.RSAPublicKey):
            raise ValidationError("public key must be an RSA key")
        try:
            raw = base64.b64decode(signature, validate=True)
        except (binascii.Error, ValueError):
            return False
        try:
            key.verify(
                raw,
                self._signing_bytes(data),
                padding.PSS(
                    mgf=padding.MGF1(hashes.SHA256()), salt_length=padding.PSS.MAX_LENGTH
                ),
                hashes.SHA256(),
            )
        except InvalidSignature:
            return False
        return True
