"""
File layout and persistence of the issued certificate.

All files of an issuance live in one folder:

    user.key          account key pair
    domain.key        domain key pair
    domain.csr        certificate signing request
    domain-chain.crt  issued certificate chain (PEM)
    keystore.jks      password protected keystore for TLS servers
"""

import os
import logging
from dataclasses import dataclass
from typing import Optional

from cryptography import x509
from cryptography.hazmat.primitives.serialization import BestAvailableEncryption, pkcs12

from .errors import ConversionError, KeyMaterialError
from .keys import load_private_key

logger = logging.getLogger(__name__)

# Used when the caller gives no keystore password. Override it.
DEFAULT_KEYSTORE_PASSWORD = "secret"
KEYSTORE_ALIAS = "domain"


@dataclass(frozen=True)
class FileLayout:
    """Locations of the files of one issuance."""

    folder: str
    user_key_file: str
    domain_key_file: str
    domain_csr_file: str
    domain_chain_file: str
    keystore_file: str

    @classmethod
    def in_folder(cls, folder: str) -> "FileLayout":
        """Create ``folder`` if needed and place every file inside it."""
        os.makedirs(folder, exist_ok=True)
        return cls(
            folder=folder,
            user_key_file=os.path.join(folder, "user.key"),
            domain_key_file=os.path.join(folder, "domain.key"),
            domain_csr_file=os.path.join(folder, "domain.csr"),
            domain_chain_file=os.path.join(folder, "domain-chain.crt"),
            keystore_file=os.path.join(folder, "keystore.jks"),
        )


def store_csr(csr_pem: bytes, path: str) -> None:
    with open(path, 'wb') as f:
        f.write(csr_pem)
    logger.info(f"CSR saved to {path}")


def store_certificate(certificate: str, path: str) -> None:
    """Write the PEM certificate chain exactly as received from the CA."""
    with open(path, 'w') as f:
        f.write(certificate)
    logger.info(f"Certificate saved to {path}")


def resolve_password(password: Optional[str]) -> str:
    if password:
        return password
    logger.warning(
        "No keystore password configured, using the default placeholder password. "
        "Set keystore_password or CERTSNEK_KEYSTORE_PASSWORD for anything but testing."
    )
    return DEFAULT_KEYSTORE_PASSWORD


def create_keystore(domain_key_path: str, chain_path: str, password: Optional[str],
                    output_path: str, alias: str = KEYSTORE_ALIAS) -> str:
    """
    Bundle the domain key and certificate chain into a PKCS#12 keystore.

    Java keystores (Jetty and friends) load PKCS#12 containers directly,
    whatever the file is called.

    Args:
        domain_key_path: PEM encoded domain private key
        chain_path: PEM encoded chain, leaf certificate first
        password: Keystore password, the placeholder is used when empty
        output_path: Where to write the keystore
        alias: Friendly name of the key entry

    Returns:
        The output path

    Raises:
        ConversionError: If the key and chain cannot be bundled
    """
    password = resolve_password(password)
    with open(chain_path, 'rb') as f:
        chain_data = f.read()

    try:
        key = load_private_key(domain_key_path)
        chain = x509.load_pem_x509_certificates(chain_data)
        keystore_data = pkcs12.serialize_key_and_certificates(
            name=alias.encode('utf-8'),
            key=key,
            cert=chain[0],
            cas=chain[1:] or None,
            encryption_algorithm=BestAvailableEncryption(password.encode('utf-8')),
        )
    except (KeyMaterialError, ValueError, TypeError) as e:
        raise ConversionError(f"Could not build keystore from {domain_key_path} and {chain_path}: {e}") from e

    with open(output_path, 'wb') as f:
        f.write(keystore_data)
    logger.info(f"Keystore saved to {output_path}")
    return output_path
