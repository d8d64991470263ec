"""
Loading and creation of the account and domain key pairs.
"""

import os
import logging

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import load_pem_private_key

from .errors import KeyMaterialError

logger = logging.getLogger(__name__)

# The default key size
KEY_SIZE = 2048


def private_key_pem(key) -> bytes:
    """Serialize a private key as unencrypted PEM."""
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption()
    )


def load_private_key(key_path: str):
    """
    Load a private key from file.

    Raises:
        OSError: If the file cannot be read
        KeyMaterialError: If the file does not hold a usable private key
    """
    with open(key_path, 'rb') as f:
        key_data = f.read()
    try:
        return load_pem_private_key(key_data, password=None)
    except (ValueError, TypeError) as e:
        raise KeyMaterialError(f"Malformed key material in {key_path}: {e}", path=key_path) from e


def load_or_create_key_pair(key_path: str, key_size: int = KEY_SIZE):
    """
    Load the key pair from ``key_path``, or generate and save a new one.

    An existing file is never overwritten, even when it cannot be parsed,
    since that key may belong to a certificate that was already issued.

    Args:
        key_path: Location of the PEM encoded private key
        key_size: RSA key size used when a new key is generated

    Returns:
        The RSA private key
    """
    if os.path.exists(key_path):
        logger.info(f"Using existing private key: {key_path}")
        return load_private_key(key_path)

    logger.info(f"Generating new private key: {key_path}")
    key = rsa.generate_private_key(
        public_exponent=65537,
        key_size=key_size,
    )

    # O_EXCL so a key created concurrently is never clobbered
    fd = os.open(key_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    with os.fdopen(fd, 'wb') as f:
        f.write(private_key_pem(key))
    return key
