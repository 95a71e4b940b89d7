"""Optional Ed25519 signatures over ledger content hashes.

A signature covers the UTF-8 bytes of ``crypto.contentHash`` (for example
``"sha256:9f2c..."``), so verifying it also pins the hash algorithm. Keys are
PEM files: PKCS8 for the private half, SubjectPublicKeyInfo for the public.

Requires the ``crypto`` extra (``pip install "cognategov[crypto]"``).
"""

from __future__ import annotations

import base64
import binascii
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from cryptography.hazmat.primitives.asymmetric.ed25519 import (  # type: ignore[import-not-found]
        Ed25519PrivateKey,
        Ed25519PublicKey,
    )

_logger = logging.getLogger(__name__)

try:
    from cryptography.exceptions import InvalidSignature  # type: ignore[import-not-found]
    from cryptography.hazmat.primitives import serialization  # type: ignore[import-not-found]
    from cryptography.hazmat.primitives.asymmetric import ed25519  # type: ignore[import-not-found]
except ModuleNotFoundError:
    InvalidSignature = None  # type: ignore[assignment,misc]
    serialization = None  # type: ignore[assignment]
    ed25519 = None  # type: ignore[assignment]

CRYPTO_AVAILABLE = ed25519 is not None

_PRIVATE_KEY_MODE = 0o600


def _require_crypto() -> tuple[Any, Any]:
    if not CRYPTO_AVAILABLE:
        raise RuntimeError('cryptography is required for Ed25519 signing (install "cognategov[crypto]")')
    return serialization, ed25519


def generate_keypair() -> tuple[bytes, bytes]:
    """Return ``(private_pem, public_pem)`` for a fresh Ed25519 key."""
    ser, ed = _require_crypto()
    key = ed.Ed25519PrivateKey.generate()
    private_pem = key.private_bytes(
        encoding=ser.Encoding.PEM,
        format=ser.PrivateFormat.PKCS8,
        encryption_algorithm=ser.NoEncryption(),
    )
    public_pem = key.public_key().public_bytes(
        encoding=ser.Encoding.PEM,
        format=ser.PublicFormat.SubjectPublicKeyInfo,
    )
    return private_pem, public_pem


def write_keypair(private_path: Path, public_path: Path) -> None:
    """Generate a key pair and write both PEM files, creating parent directories.

    The private key file is made readable by its owner only.
    """
    private_pem, public_pem = generate_keypair()
    for path in (private_path, public_path):
        path.parent.mkdir(parents=True, exist_ok=True)
    private_path.write_bytes(private_pem)
    private_path.chmod(_PRIVATE_KEY_MODE)
    public_path.write_bytes(public_pem)
    _logger.info("wrote Ed25519 key pair to %s and %s", private_path.name, public_path.name)


def load_private_key(data: bytes) -> "Ed25519PrivateKey":
    ser, ed = _require_crypto()
    key = ser.load_pem_private_key(data, password=None)
    if not isinstance(key, ed.Ed25519PrivateKey):
        raise ValueError("signing key is not an Ed25519 private key")
    return key


def load_public_key(data: bytes) -> "Ed25519PublicKey":
    ser, ed = _require_crypto()
    key = ser.load_pem_public_key(data)
    if not isinstance(key, ed.Ed25519PublicKey):
        raise ValueError("verification key is not an Ed25519 public key")
    return key


def load_private_key_file(path: Path) -> "Ed25519PrivateKey":
    return load_private_key(path.read_bytes())


def load_public_key_file(path: Path) -> "Ed25519PublicKey":
    return load_public_key(path.read_bytes())


def sign_content_hash(private_key: "Ed25519PrivateKey", content_hash: str) -> str:
    """Sign ``content_hash``; returns standard base64."""
    _require_crypto()
    return base64.b64encode(private_key.sign(content_hash.encode("utf-8"))).decode("ascii")


def verify_content_hash(public_key: "Ed25519PublicKey", content_hash: str, signature_b64: str) -> bool:
    """True when ``signature_b64`` is a valid signature of ``content_hash``.

    Malformed base64 counts as an invalid signature rather than an error.
    """
    _require_crypto()
    try:
        signature = base64.b64decode(signature_b64, validate=True)
    except (binascii.Error, ValueError):
        return False
    try:
        public_key.verify(signature, content_hash.encode("utf-8"))
    except InvalidSignature:
        return False
    return True
