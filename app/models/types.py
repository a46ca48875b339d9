import base64
import hashlib

from cryptography.fernet import Fernet, InvalidToken, MultiFernet
from sqlalchemy import LargeBinary
from sqlalchemy.types import TypeDecorator

from app.core.settings import settings


def _fernet_for(secret: str) -> Fernet:
    # Any passphrase works; Fernet wants 32 url-safe base64 bytes.
    return Fernet(base64.urlsafe_b64encode(hashlib.sha256(secret.encode("utf-8")).digest()))


def pii_cipher(keys: str | None = None) -> MultiFernet:
    raw = keys if keys is not None else (settings.pii_encryption_keys or settings.secret_key)
    secrets = [item.strip() for item in raw.split(",") if item.strip()]
    if not secrets:
        raise ValueError("No PII encryption key configured")
    return MultiFernet([_fernet_for(secret) for secret in secrets])


class EncryptedString(TypeDecorator):
    """Text column stored as a Fernet token, e.g. the borrower's SSN.

    Values are decrypted on load only; nothing in the API echoes them back.
    """

    impl = LargeBinary
    cache_ok = True

    def __init__(self, *args, keys: str | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.keys = keys

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return pii_cipher(self.keys).encrypt(str(value).encode("utf-8"))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        try:
            return pii_cipher(self.keys).decrypt(bytes(value)).decode("utf-8")
        except InvalidToken as exc:
            raise ValueError("Stored value could not be decrypted with the configured keys") from exc
