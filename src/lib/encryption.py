"""
PII encryption for the ChantierPro compliance core.

Authenticated field-level encryption for personal data (email, phone,
address, SIRET, birth date, bank account).

Key Features:
- AES-256-GCM with a fresh random 16-byte IV per value
- Key derived from the master secret with scrypt (N=2^14, r=8, p=1)
- Ciphertext, IV and authentication tag stored together, hex-encoded
- Fail-closed decryption: tag mismatch or malformed input raises DecryptionError

The master secret and salt are mandatory. There is no fallback key in any
environment.

Usage:
    from src.lib.encryption import DataEncryption

    cipher = DataEncryption.from_settings(SecuritySettings.from_env())
    encrypted = cipher.encrypt("jean.dupont@example.fr")
    plaintext = cipher.decrypt(encrypted)

    stored = cipher.encrypt_pii({"email": "jean.dupont@example.fr", "nom": "Dupont"})
    # {"nom": "Dupont", "email_encrypted": {"ciphertext": ..., "iv": ..., "tag": ...}}
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from src.lib.exceptions import ConfigurationError, DecryptionError, EncryptionError

if TYPE_CHECKING:
    from src.config.settings import SecuritySettings

KEY_LENGTH = 32
IV_LENGTH = 16
TAG_LENGTH = 16

SCRYPT_N = 2**14
SCRYPT_R = 8
SCRYPT_P = 1

# Record keys encrypted by encrypt_pii, in storage order
PII_FIELDS: tuple[str, ...] = (
    "email",
    "phone",
    "address",
    "siret",
    "birthDate",
    "bankAccount",
)

ENCRYPTED_SUFFIX = "_encrypted"


# =============================================================================
# Encrypted Value Container
# =============================================================================

@dataclass(frozen=True)
class EncryptedValue:
    """
    One encrypted field value.

    Attributes:
        ciphertext: Hex-encoded ciphertext (same length as the plaintext bytes)
        iv: Hex-encoded 16-byte IV
        tag: Hex-encoded 16-byte GCM authentication tag
    """
    ciphertext: str
    iv: str
    tag: str

    def to_dict(self) -> dict[str, str]:
        """Serialize for database storage."""
        return {"ciphertext": self.ciphertext, "iv": self.iv, "tag": self.tag}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> EncryptedValue:
        """
        Deserialize from database storage.

        Raises:
            DecryptionError: A component is missing or not a string.
        """
        values = {}
        for name in ("ciphertext", "iv", "tag"):
            value = data.get(name)
            if not isinstance(value, str):
                raise DecryptionError(f"Encrypted value is missing '{name}'")
            values[name] = value
        return cls(**values)


# =============================================================================
# Data Encryption
# =============================================================================

class DataEncryption:
    """
    AES-256-GCM cipher for PII values.

    Args:
        master_secret: Secret the key is derived from.
        salt: Key-derivation salt.

    Raises:
        ConfigurationError: Empty secret or salt.
    """

    def __init__(self, master_secret: str | bytes, salt: str | bytes) -> None:
        if not master_secret:
            raise ConfigurationError("PII encryption requires a master secret")
        if not salt:
            raise ConfigurationError("PII encryption requires a key-derivation salt")

        secret_bytes = master_secret.encode("utf-8") if isinstance(master_secret, str) else master_secret
        salt_bytes = salt.encode("utf-8") if isinstance(salt, str) else salt

        kdf = Scrypt(salt=salt_bytes, length=KEY_LENGTH, n=SCRYPT_N, r=SCRYPT_R, p=SCRYPT_P)
        self._aesgcm = AESGCM(kdf.derive(secret_bytes))

    @classmethod
    def from_settings(cls, settings: SecuritySettings) -> DataEncryption:
        """Build the cipher from settings, failing fast when secrets are missing."""
        key, salt = settings.require_encryption_secrets()
        return cls(key, salt)

    def encrypt(self, plaintext: str) -> EncryptedValue:
        """Encrypt one string value with a fresh IV."""
        if not isinstance(plaintext, str):
            raise EncryptionError(f"Expected str plaintext, got {type(plaintext).__name__}")

        iv = os.urandom(IV_LENGTH)
        sealed = self._aesgcm.encrypt(iv, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return EncryptedValue(ciphertext=ciphertext.hex(), iv=iv.hex(), tag=tag.hex())

    def decrypt(self, value: EncryptedValue | Mapping[str, Any]) -> str:
        """
        Decrypt and authenticate one value.

        Raises:
            DecryptionError: Tag mismatch, malformed hex, or wrong IV/tag length.
        """
        encrypted = value if isinstance(value, EncryptedValue) else EncryptedValue.from_dict(value)
        try:
            iv = bytes.fromhex(encrypted.iv)
            tag = bytes.fromhex(encrypted.tag)
            ciphertext = bytes.fromhex(encrypted.ciphertext)
        except ValueError as e:
            raise DecryptionError("Encrypted value is not valid hex") from e

        if len(iv) != IV_LENGTH or len(tag) != TAG_LENGTH:
            raise DecryptionError("Encrypted value has an invalid IV or tag length")

        try:
            plaintext = self._aesgcm.decrypt(iv, ciphertext + tag, None)
        except InvalidTag as e:
            raise DecryptionError("Authentication tag mismatch") from e

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecryptionError("Decrypted value is not valid UTF-8") from e

    def encrypt_pii(self, record: Mapping[str, Any]) -> dict[str, Any]:
        """
        Return a copy of ``record`` with PII fields encrypted.

        Each non-empty PII field ``f`` is replaced by ``f_encrypted``
        ({ciphertext, iv, tag}). Empty PII values and all other keys are
        copied unchanged.
        """
        result = dict(record)
        for name in PII_FIELDS:
            value = result.get(name)
            if not value:
                continue
            result[f"{name}{ENCRYPTED_SUFFIX}"] = self.encrypt(str(value)).to_dict()
            del result[name]
        return result

    def decrypt_pii(self, record: Mapping[str, Any]) -> dict[str, Any]:
        """Inverse of ``encrypt_pii``. Raises DecryptionError on any tampered field."""
        result = dict(record)
        for name in PII_FIELDS:
            encrypted_key = f"{name}{ENCRYPTED_SUFFIX}"
            encrypted = result.get(encrypted_key)
            if encrypted is None:
                continue
            result[name] = self.decrypt(encrypted)
            del result[encrypted_key]
        return result
