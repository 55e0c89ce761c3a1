"""
Encryption at rest for TOTP secrets.
Uses AES-256-GCM; ciphertexts carry a version prefix so legacy plaintext rows
and rotated keys can still be read.
"""
import os
import re
import hmac
import base64
import hashlib
import binascii
from flask import current_app
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.exceptions import InvalidTag

CIPHERTEXT_PREFIX = 'v1.'
_HEX_KEY = re.compile(r'^[0-9a-fA-F]{64}$')


def _parse_key(raw):
    """Accept a 32-byte key as 64 hex chars or base64. Returns None if unusable."""
    if not raw:
        return None
    try:
        key = bytes.fromhex(raw) if _HEX_KEY.match(raw) else base64.b64decode(raw)
    except (ValueError, binascii.Error):
        return None
    return key if len(key) == 32 else None


class SecretEncryptor:
    """Encrypts with the primary key, decrypts with primary then previous."""

    def __init__(self, primary_key, previous_key=None):
        self._primary = AESGCM(primary_key) if primary_key else None
        self._fallbacks = [self._primary] if self._primary else []
        if previous_key and previous_key != primary_key:
            self._fallbacks.append(AESGCM(previous_key))

    @property
    def enabled(self):
        return self._primary is not None

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a secret.
        Returns 'v1.' + base64(nonce || ciphertext); passthrough when no key is configured.
        """
        if not plaintext or not self.enabled:
            return plaintext

        nonce = os.urandom(12)  # 96-bit nonce for GCM
        ciphertext = self._primary.encrypt(nonce, plaintext.encode('utf-8'), None)
        return CIPHERTEXT_PREFIX + base64.b64encode(nonce + ciphertext).decode('utf-8')

    def decrypt(self, stored: str) -> str:
        if not stored or not stored.startswith(CIPHERTEXT_PREFIX):
            # Legacy plaintext value
            return stored
        if not self.enabled:
            raise ValueError('Encrypted TOTP secret found but MFA_ENCRYPTION_KEY is not set')

        raw = base64.b64decode(stored[len(CIPHERTEXT_PREFIX):])
        nonce, ciphertext = raw[:12], raw[12:]
        for aesgcm in self._fallbacks:
            try:
                return aesgcm.decrypt(nonce, ciphertext, None).decode('utf-8')
            except InvalidTag:
                continue
        raise ValueError('Failed to decrypt TOTP secret with available keys')


def get_encryptor() -> SecretEncryptor:
    """Build (once per app) the encryptor from the app's configured keys."""
    ext = current_app.extensions
    encryptor = ext.get('secret_encryptor')
    if encryptor is None:
        encryptor = SecretEncryptor(
            _parse_key(current_app.config.get('MFA_ENCRYPTION_KEY')),
            _parse_key(current_app.config.get('MFA_ENCRYPTION_KEY_PREV')),
        )
        ext['secret_encryptor'] = encryptor
    return encryptor


def encrypt_secret(value: str) -> str:
    """Convenience function to encrypt a TOTP secret."""
    return get_encryptor().encrypt(value)


def decrypt_secret(value: str) -> str:
    """Convenience function to decrypt a TOTP secret."""
    return get_encryptor().decrypt(value)


def keyed_digest(value: str) -> str:
    """Deterministic HMAC-SHA256 hex digest, keyed with the app SECRET_KEY.
    Used for lookups of values that must never be stored in plaintext."""
    key = current_app.config['SECRET_KEY'].encode('utf-8')
    return hmac.new(key, value.encode('utf-8'), hashlib.sha256).hexdigest()
