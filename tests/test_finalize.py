"""Tests for CSR creation and order finalization."""

import pytest
from cryptography import x509
from cryptography.x509.oid import ExtensionOID

from certsnek.errors import OrderInvalid, OrderTimeout
from certsnek.finalize import build_csr, execute_order
from certsnek.models import Status
from certsnek.polling import PollPolicy

from conftest import FakeGateway, make_order


def _policy(sleeper):
    return PollPolicy(max_attempts=10, interval=3.0, sleep=sleeper)


class TestBuildCsr:

    def test_contains_all_domains(self, rsa_key):
        csr = x509.load_pem_x509_csr(build_csr(rsa_key, ["example.com", "www.example.com"]))
        san = csr.extensions.get_extension_for_oid(ExtensionOID.SUBJECT_ALTERNATIVE_NAME)
        assert set(san.value.get_values_for_type(x509.DNSName)) == {"example.com", "www.example.com"}
        assert csr.is_signature_valid

    def test_deterministic(self, rsa_key):
        assert build_csr(rsa_key, ["example.com"]) == build_csr(rsa_key, ["example.com"])

    def test_bound_to_domain_key(self, rsa_key):
        csr = x509.load_pem_x509_csr(build_csr(rsa_key, ["example.com"]))
        assert csr.public_key().public_numbers() == rsa_key.public_key().public_numbers()


class TestExecuteOrder:

    def test_finalizes_ready_order(self, sleeper):
        gateway = FakeGateway(order_statuses=["ready", "valid"])
        order = execute_order(gateway, make_order(), b"csr", _policy(sleeper))

        assert order.status is Status.VALID
        assert order.certificate == "https://ca.test/cert/1"
        assert gateway.csr_pem == b"csr"
        assert gateway.names() == ["refresh_order", "finalize_order", "refresh_order"]
        # The processing snapshot returned by finalization costs one sleep
        assert sleeper.sleeps == [3.0]

    def test_finalization_reporting_valid_ends_polling(self, sleeper):
        gateway = FakeGateway(order_statuses=["ready"], finalize_status="valid")
        order = execute_order(gateway, make_order(), b"csr", _policy(sleeper))

        assert order.status is Status.VALID
        assert gateway.names() == ["refresh_order", "finalize_order"]
        assert sleeper.sleeps == []

    def test_waits_for_ready_and_processing(self, sleeper):
        gateway = FakeGateway(order_statuses=["pending", "ready", "processing", "processing", "valid"])
        order = execute_order(gateway, make_order(), b"csr", _policy(sleeper))

        assert order.status is Status.VALID
        assert gateway.names().count("finalize_order") == 1
        assert gateway.names().count("refresh_order") == 5
        assert sleeper.sleeps == [3.0] * 4

    def test_already_valid_order_is_not_finalized_again(self, sleeper):
        gateway = FakeGateway(order_statuses=["valid"])
        execute_order(gateway, make_order(), b"csr", _policy(sleeper))
        assert "finalize_order" not in gateway.names()

    def test_invalid_order(self, sleeper):
        gateway = FakeGateway(order_statuses=["ready", "processing", "invalid"])

        with pytest.raises(OrderInvalid, match="finalization failed") as exc_info:
            execute_order(gateway, make_order(), b"csr", _policy(sleeper))

        assert exc_info.value.order.status is Status.INVALID
        assert len(sleeper.sleeps) == 2

    def test_timeout(self, sleeper):
        gateway = FakeGateway(order_statuses=["ready", "processing"])

        with pytest.raises(OrderTimeout) as exc_info:
            execute_order(gateway, make_order(), b"csr", _policy(sleeper))

        assert exc_info.value.attempts == 10
        assert gateway.names().count("refresh_order") == 10
        assert len(sleeper.sleeps) == 9

    def test_waiting_for_ready_shares_the_attempt_budget(self, sleeper):
        gateway = FakeGateway(order_statuses=["pending"] * 9 + ["ready", "processing"])

        with pytest.raises(OrderTimeout):
            execute_order(gateway, make_order(), b"csr", _policy(sleeper))

        assert gateway.names().count("refresh_order") == 10
        assert gateway.names().count("finalize_order") == 1
        assert sum(sleeper.sleeps) == 27.0
