"""Root conftest for the certsnek test suite."""

import datetime
import itertools
from dataclasses import replace
from typing import Dict, List, Optional, Sequence

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from certsnek.errors import OrderError
from certsnek.models import Account, Authorization, Challenge, Order, Status

# ---------------------------------------------------------------------------
# Keys and certificates
# ---------------------------------------------------------------------------


def make_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def _certificate(subject, issuer, public_key, signing_key, ca=False):
    now = datetime.datetime.now(datetime.timezone.utc)
    return (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(public_key)
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(minutes=1))
        .not_valid_after(now + datetime.timedelta(days=90))
        .add_extension(x509.BasicConstraints(ca=ca, path_length=None), critical=True)
        .sign(signing_key, hashes.SHA256())
    )


class TestCA:
    """Signs leaf certificates for CSRs, standing in for the real CA."""

    __test__ = False

    def __init__(self):
        self.key = make_key()
        self.name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "certsnek test CA")])
        self.certificate = _certificate(self.name, self.name, self.key.public_key(), self.key, ca=True)

    def sign_csr(self, csr_pem: bytes) -> str:
        csr = x509.load_pem_x509_csr(csr_pem)
        subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "example.com")])
        leaf = _certificate(subject, self.name, csr.public_key(), self.key)
        return (
            leaf.public_bytes(serialization.Encoding.PEM)
            + self.certificate.public_bytes(serialization.Encoding.PEM)
        ).decode("ascii")

    def chain_for_key(self, key) -> str:
        subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "example.com")])
        leaf = _certificate(subject, self.name, key.public_key(), self.key)
        return (
            leaf.public_bytes(serialization.Encoding.PEM)
            + self.certificate.public_bytes(serialization.Encoding.PEM)
        ).decode("ascii")


@pytest.fixture(scope="session")
def rsa_key():
    """A 2048 bit RSA key shared by the whole session."""
    return make_key()


@pytest.fixture(scope="session")
def test_ca():
    return TestCA()


# ---------------------------------------------------------------------------
# Fake CA gateway
# ---------------------------------------------------------------------------


def make_challenge(token="tok", status=Status.PENDING, typ="http-01", error=None):
    return Challenge(
        url=f"https://ca.test/chall/{typ}/{token}",
        typ=typ,
        status=status,
        token=token,
        authorization=f"{token}.thumbprint",
        error=error,
    )


def make_order(domains=("example.com",), status=Status.PENDING):
    return Order(
        url="https://ca.test/order/1",
        status=status,
        identifiers=tuple(domains),
        authorizations=tuple(f"https://ca.test/authz/{domain}" for domain in domains),
        finalize="https://ca.test/finalize/1",
    )


class FakeGateway:
    """
    In-memory stand-in for AcmeGateway.

    Status sequences are consumed one per refresh; the last value repeats.
    """

    def __init__(
        self,
        challenge_statuses: Sequence[str] = ("valid",),
        order_statuses: Sequence[str] = ("ready", "valid"),
        authorization_statuses: Optional[Dict[str, str]] = None,
        ca: Optional[TestCA] = None,
        chain: Optional[str] = None,
        tokens: Optional[Dict[str, str]] = None,
        trigger_status: str = "processing",
        finalize_status: str = "processing",
    ):
        self.challenge_statuses = [Status(s) for s in challenge_statuses]
        self.order_statuses = iter(self._repeat_last([Status(s) for s in order_statuses]))
        self.authorization_statuses = authorization_statuses or {}
        self.ca = ca
        self.chain = chain
        self.tokens = tokens or {}
        self.trigger_status = Status(trigger_status)
        self.finalize_status = Status(finalize_status)
        self.calls: List[tuple] = []
        self.csr_pem = None
        self._challenge_iters = {}

    @staticmethod
    def _repeat_last(values):
        return itertools.chain(values, itertools.repeat(values[-1]))

    def find_or_register_account(self, email=None):
        self.calls.append(("find_or_register_account", email))
        return Account(uri="https://ca.test/acct/1")

    def create_order(self, domains):
        self.calls.append(("create_order", tuple(domains)))
        return make_order(domains)

    def fetch_authorizations(self, order):
        self.calls.append(("fetch_authorizations", order.url))
        authorizations = []
        for domain in order.identifiers:
            token = self.tokens.get(domain, "tok" if len(order.identifiers) == 1 else f"tok-{domain}")
            status = Status(self.authorization_statuses.get(domain, "pending"))
            authorizations.append(Authorization(
                url=f"https://ca.test/authz/{domain}",
                identifier=domain,
                status=status,
                challenges=(
                    make_challenge(token, typ="dns-01"),
                    make_challenge(token),
                ),
            ))
        return authorizations

    def trigger_challenge(self, challenge):
        self.calls.append(("trigger_challenge", challenge.token))
        return replace(challenge, status=self.trigger_status)

    def refresh_challenge(self, challenge):
        self.calls.append(("refresh_challenge", challenge.token))
        statuses = self._challenge_iters.setdefault(
            challenge.url, iter(self._repeat_last(self.challenge_statuses))
        )
        status = next(statuses)
        error = "connection refused" if status is Status.INVALID else None
        return replace(challenge, status=status, error=error)

    def refresh_order(self, order):
        self.calls.append(("refresh_order", order.url))
        status = next(self.order_statuses)
        certificate = "https://ca.test/cert/1" if status is Status.VALID else None
        error = "finalization failed" if status is Status.INVALID else None
        return replace(order, status=status, certificate=certificate, error=error)

    def finalize_order(self, order, csr_pem):
        self.calls.append(("finalize_order", order.url))
        self.csr_pem = csr_pem
        certificate = "https://ca.test/cert/1" if self.finalize_status is Status.VALID else None
        return replace(order, status=self.finalize_status, certificate=certificate)

    def get_certificate(self, order):
        self.calls.append(("get_certificate", order.url))
        if order.status is not Status.VALID:
            raise OrderError("not valid", order)
        if self.chain is not None:
            return self.chain
        return self.ca.sign_csr(self.csr_pem)

    def names(self):
        return [call[0] for call in self.calls]


class SleepRecorder:
    """Records requested sleeps instead of sleeping."""

    def __init__(self):
        self.sleeps: List[float] = []

    def __call__(self, seconds: float):
        self.sleeps.append(seconds)


@pytest.fixture()
def sleeper():
    return SleepRecorder()
