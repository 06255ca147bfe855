"""Fernet encryption for exchange credentials stored on the bot row."""

from cryptography.fernet import Fernet, InvalidToken

from gridbot.config import settings

_fernet: Fernet | None = None


def _get_fernet() -> Fernet:
    global _fernet
    if _fernet is None:
        key = settings.encryption_key
        if not key:
            raise RuntimeError("GB_ENCRYPTION_KEY not set. Generate one with: python -m gridbot.cli genkey")
        _fernet = Fernet(key.encode() if isinstance(key, str) else key)
    return _fernet


def generate_key() -> str:
    return Fernet.generate_key().decode()


def encrypt(plaintext: str) -> str:
    """Encrypt a string and return base64-encoded ciphertext."""
    return _get_fernet().encrypt(plaintext.encode()).decode()


def decrypt(ciphertext: str) -> str:
    """Decrypt a base64-encoded ciphertext and return plaintext.

    Raises ValueError if the ciphertext was produced with a different key.
    """
    try:
        return _get_fernet().decrypt(ciphertext.encode()).decode()
    except InvalidToken as e:
        raise ValueError("Credential could not be decrypted with the configured key") from e
