"""
Fernet encryption for saved server credentials.

The key comes from ``ENCRYPTION_KEY`` when set; otherwise it is read from (or
generated into) ``<DATA_DIR>/secret.key``.  Anyone holding that key can decrypt
the stored passwords, so the file is written owner-readable only.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from cryptography.fernet import Fernet

_fernet: Fernet | None = None


def _load_or_create_key(key_path: Path) -> bytes:
    if key_path.exists():
        return key_path.read_bytes().strip()

    key = Fernet.generate_key()
    key_path.write_bytes(key)
    try:
        os.chmod(key_path, 0o600)
    except OSError:
        pass  # Windows may not support chmod
    return key


def init_crypto(data_dir: str | Path) -> None:
    """Initialise the module-level cipher."""
    global _fernet

    from dbpulse.core.config import Config

    if Config.ENCRYPTION_KEY:
        _fernet = Fernet(Config.ENCRYPTION_KEY.encode("ascii"))
        return

    data_dir = Path(data_dir)
    data_dir.mkdir(parents=True, exist_ok=True)
    _fernet = Fernet(_load_or_create_key(data_dir / "secret.key"))


def _get_fernet() -> Fernet:
    if _fernet is None:
        raise RuntimeError("Crypto not initialised, call init_crypto(data_dir) first.")
    return _fernet


def encrypt(plaintext: str) -> str:
    """Encrypt a plaintext string → URL-safe base64 token (str)."""
    return _get_fernet().encrypt(plaintext.encode("utf-8")).decode("ascii")


def decrypt(token: str) -> str:
    """Decrypt a token produced by ``encrypt()`` → plaintext."""
    return _get_fernet().decrypt(token.encode("ascii")).decode("utf-8")


def encrypt_optional(plaintext: Optional[str]) -> Optional[str]:
    return encrypt(plaintext) if plaintext else None


def decrypt_optional(token: Optional[str]) -> str:
    return decrypt(token) if token else ""
