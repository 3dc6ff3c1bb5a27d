"""
Encrypt/decrypt and CRUD for per-user integration tokens (GitHub, Vercel).

Values are stored as hex(iv):hex(ciphertext) using AES-256-CBC with a fresh
random IV per value. The key is the SHA-256 digest of ENCRYPTION_KEY.
"""
import logging
import os
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from sqlalchemy.orm import Session

from database import IntegrationTokens, utcnow
from errors import DecryptionError
from models import IntegrationProvider

logger = logging.getLogger(__name__)

IV_LENGTH = 16

# provider -> (token, refresh token, expiry) column names
_FIELDS = {
    IntegrationProvider.GITHUB: ("github_token", "github_refresh_token", "github_token_expiry"),
    IntegrationProvider.VERCEL: ("vercel_token", "vercel_refresh_token", "vercel_token_expiry"),
}


class TokenCipher:
    """AES-256-CBC cipher producing hex(iv):hex(ciphertext) strings."""

    def __init__(self, secret: str):
        if not secret:
            raise RuntimeError("ENCRYPTION_KEY not set")
        digest = hashes.Hash(hashes.SHA256())
        digest.update(secret.encode())
        self._key = digest.finalize()

    def encrypt(self, plain: str) -> str:
        iv = os.urandom(IV_LENGTH)
        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        data = padder.update(plain.encode()) + padder.finalize()
        encryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).encryptor()
        encrypted = encryptor.update(data) + encryptor.finalize()
        return f"{iv.hex()}:{encrypted.hex()}"

    def decrypt(self, value: str) -> str:
        iv_hex, sep, body_hex = value.partition(":")
        if not sep:
            raise DecryptionError("Malformed token ciphertext (missing IV separator)")
        try:
            iv = bytes.fromhex(iv_hex)
            body = bytes.fromhex(body_hex)
        except ValueError:
            raise DecryptionError("Malformed token ciphertext (not hex)")
        if len(iv) != IV_LENGTH:
            raise DecryptionError(f"Malformed token ciphertext (IV must be {IV_LENGTH} bytes)")
        if not body or len(body) % IV_LENGTH:
            raise DecryptionError("Malformed token ciphertext (truncated payload)")
        decryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).decryptor()
        unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
        try:
            data = decryptor.update(body) + decryptor.finalize()
            return (unpadder.update(data) + unpadder.finalize()).decode()
        except (ValueError, UnicodeDecodeError):
            raise DecryptionError("Token could not be decrypted (corrupted data or wrong key)")


class TokenVault:
    """Per-user encrypted storage of third-party access tokens."""

    def __init__(self, secret: str):
        self.cipher = TokenCipher(secret)

    def _row(self, db: Session, user_id: UUID) -> Optional[IntegrationTokens]:
        return db.query(IntegrationTokens).filter(IntegrationTokens.user_id == user_id).first()

    def store(
        self,
        db: Session,
        user_id: UUID,
        provider: IntegrationProvider,
        token: str,
        ttl: timedelta = timedelta(days=365),
        refresh_token: Optional[str] = None,
        team_id: Optional[str] = None,
    ) -> IntegrationTokens:
        """Upsert the encrypted token for one provider and set its expiry."""
        provider = IntegrationProvider(provider)
        token_field, refresh_field, expiry_field = _FIELDS[provider]
        row = self._row(db, user_id)
        if row is None:
            row = IntegrationTokens(user_id=user_id)
            db.add(row)
        setattr(row, token_field, self.cipher.encrypt(token))
        setattr(row, refresh_field, self.cipher.encrypt(refresh_token) if refresh_token else None)
        setattr(row, expiry_field, utcnow() + ttl)
        if provider == IntegrationProvider.VERCEL:
            row.vercel_team_id = team_id
        db.commit()
        db.refresh(row)
        logger.info("Stored %s token for user %s", provider.value, user_id)
        return row

    def retrieve(self, db: Session, user_id: UUID, provider: IntegrationProvider) -> Optional[str]:
        """Decrypted token, or None when not connected. Raises DecryptionError."""
        token_field = _FIELDS[IntegrationProvider(provider)][0]
        row = self._row(db, user_id)
        value = getattr(row, token_field) if row else None
        if not value:
            return None
        return self.cipher.decrypt(value)

    def team_id(self, db: Session, user_id: UUID) -> Optional[str]:
        row = self._row(db, user_id)
        return row.vercel_team_id if row else None

    def clear(self, db: Session, user_id: UUID, provider: IntegrationProvider) -> bool:
        """Unset one provider's fields. The row itself is kept. Returns True if a row existed."""
        provider = IntegrationProvider(provider)
        row = self._row(db, user_id)
        if row is None:
            return False
        for field in _FIELDS[provider]:
            setattr(row, field, None)
        if provider == IntegrationProvider.VERCEL:
            row.vercel_team_id = None
        db.commit()
        logger.info("Cleared %s token for user %s", provider.value, user_id)
        return True

    def status(self, db: Session, user_id: UUID) -> dict[str, dict]:
        """Connection state per provider. Does not contact the provider."""
        row = self._row(db, user_id)
        now = utcnow()
        result = {}
        for provider, (token_field, _, expiry_field) in _FIELDS.items():
            expiry: Optional[datetime] = getattr(row, expiry_field) if row else None
            result[provider.value] = {
                "connected": bool(row is not None and getattr(row, token_field)),
                "expiry": expiry,
                "expired": bool(expiry is not None and expiry <= now),
            }
        return result
