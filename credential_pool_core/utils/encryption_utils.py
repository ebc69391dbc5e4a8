"""
At-rest encryption for credential secrets.

Secrets are encrypted with AES-192-CBC under a key derived from a passphrase
with scrypt. Stored values look like ``<ivHex>:<cipherHex>`` with a random IV
per encryption. Values written before IVs were embedded carry only
``<cipherHex>`` and were encrypted with an all-zero IV; they still decrypt.
"""

import os
import re
from typing import Optional

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from ..config import SecurityConfig, get_config
from ..constants import GEMINI_KEY_PATTERN, Encryption, Limits
from ..exceptions import ConfigurationError, DecryptionFailedError
from .logger import get_logger

LEGACY_IV = bytes(Encryption.IV_LENGTH)


def derive_key(passphrase: str, salt: str = Encryption.KDF_SALT) -> bytes:
    """Derive the 24-byte AES key from a passphrase."""
    kdf = Scrypt(
        salt=salt.encode("utf-8"),
        length=Encryption.KEY_LENGTH,
        n=Encryption.KDF_N,
        r=Encryption.KDF_R,
        p=Encryption.KDF_P,
    )
    return kdf.derive(passphrase.encode("utf-8"))


class SecretCodec:
    """
    Encrypts, decrypts, validates and masks credential secrets.

    A codec is bound to one passphrase. Rotating the passphrase means creating
    a second codec and re-encrypting stored values with it.
    """

    def __init__(
        self,
        passphrase: str,
        salt: str = Encryption.KDF_SALT,
        secret_pattern: Optional[str] = GEMINI_KEY_PATTERN,
    ):
        if not passphrase:
            raise ConfigurationError(
                "Encryption passphrase must not be empty", setting="encryption_passphrase"
            )
        self._key = derive_key(passphrase, salt)
        self._pattern = re.compile(secret_pattern) if secret_pattern else None
        self.logger = get_logger()

    @classmethod
    def from_config(
        cls,
        security_config: Optional[SecurityConfig] = None,
        secret_pattern: Optional[str] = GEMINI_KEY_PATTERN,
    ) -> "SecretCodec":
        """
        Build a codec from configuration.

        Raises:
            ConfigurationError: If no passphrase is configured
        """
        security_config = security_config or get_config().security
        passphrase = security_config.require_passphrase()
        return cls(passphrase, salt=security_config.key_salt, secret_pattern=secret_pattern)

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a secret with a fresh random IV.

        Args:
            plaintext: The secret to protect

        Returns:
            ``<ivHex>:<cipherHex>``
        """
        iv = os.urandom(Encryption.IV_LENGTH)
        padder = padding.PKCS7(Encryption.BLOCK_SIZE_BITS).padder()
        padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()

        encryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()

        return f"{iv.hex()}{Encryption.SEPARATOR}{ciphertext.hex()}"

    def decrypt(self, stored: str) -> str:
        """
        Decrypt a stored secret in either the current or the legacy format.

        Raises:
            DecryptionFailedError: If the value is malformed or the key does not match
        """
        if not stored:
            raise DecryptionFailedError("Encrypted value is empty")

        try:
            if Encryption.SEPARATOR in stored:
                iv_hex, cipher_hex = stored.split(Encryption.SEPARATOR, 1)
                iv = bytes.fromhex(iv_hex)
            else:
                iv, cipher_hex = LEGACY_IV, stored
            ciphertext = bytes.fromhex(cipher_hex)

            if len(iv) != Encryption.IV_LENGTH:
                raise ValueError(f"IV must be {Encryption.IV_LENGTH} bytes, got {len(iv)}")

            decryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).decryptor()
            padded = decryptor.update(ciphertext) + decryptor.finalize()

            unpadder = padding.PKCS7(Encryption.BLOCK_SIZE_BITS).unpadder()
            plaintext = unpadder.update(padded) + unpadder.finalize()
            return plaintext.decode("utf-8")
        except ValueError as e:
            # bad hex, bad IV, wrong block length, bad padding and non-UTF-8 all land here
            raise DecryptionFailedError(
                "Failed to decrypt credential secret",
                cause=e,
                legacy_format=Encryption.SEPARATOR not in stored,
            ) from e

    def validate_format(self, plaintext) -> bool:
        """Check a plaintext secret against the provider's key format."""
        if not isinstance(plaintext, str) or not plaintext.strip():
            return False
        if self._pattern is None:
            return not any(ch.isspace() for ch in plaintext)
        return self._pattern.match(plaintext) is not None

    @staticmethod
    def mask(secret: str) -> str:
        """
        Mask a secret for display.

        Short secrets are fully masked; longer ones keep the first 10 and last 3
        characters around a fixed-length run of ``*`` so the length is not leaked.
        """
        prefix, suffix = Limits.MASK_PREFIX_LENGTH, Limits.MASK_SUFFIX_LENGTH
        if len(secret) <= prefix + suffix:
            return "*" * len(secret)
        return f"{secret[:prefix]}{'*' * Limits.MASK_RUN_LENGTH}{secret[-suffix:]}"

    @staticmethod
    def is_legacy_format(stored: str) -> bool:
        return bool(stored) and Encryption.SEPARATOR not in stored
