"""
CSR creation and order finalization.
"""

import logging
from typing import Optional, Sequence

from acme import crypto_util

from .errors import OrderInvalid, OrderTimeout
from .keys import private_key_pem
from .models import Order, Status
from .polling import CancelToken, PollPolicy, poll_until

logger = logging.getLogger(__name__)


def build_csr(domain_key, domains: Sequence[str]) -> bytes:
    """
    Generate a PEM encoded CSR for the domains, signed with the domain key.

    The same key and domain list always produce the same CSR.
    """
    return crypto_util.make_csr(private_key_pem(domain_key), list(domains))


def _invalid(order: Order, attempts: int) -> OrderInvalid:
    detail = f": {order.error}" if order.error else ""
    return OrderInvalid(f"order failed{detail}", order)


def _timeout(order: Order, attempts: int) -> OrderTimeout:
    return OrderTimeout(f"order timeout after {attempts} attempts", order, attempts=attempts)


def execute_order(gateway, order: Order, csr_pem: bytes, policy: Optional[PollPolicy] = None,
                  cancel: Optional[CancelToken] = None) -> Order:
    """
    Submit the CSR and wait until the order is valid.

    The order is finalized the first time it is seen ``ready``. Waiting for
    ``ready`` and waiting for ``valid`` share one attempt budget.

    Args:
        gateway: The AcmeGateway holding the order
        order: An order whose challenges are valid
        csr_pem: The encoded CSR
        policy: Polling policy, 10 attempts 3 seconds apart by default
        cancel: Optional cancellation token

    Returns:
        The valid order snapshot

    Raises:
        OrderInvalid: If the CA reports the order as invalid
        OrderTimeout: If all attempts are used up without a valid status
    """
    finalized = False

    def fetch() -> Order:
        nonlocal finalized
        current = gateway.refresh_order(order)
        if current.status is Status.READY and not finalized:
            finalized = True
            return gateway.finalize_order(current, csr_pem)
        return current

    order = poll_until(
        fetch,
        {Status.VALID},
        policy or PollPolicy(),
        _invalid,
        _timeout,
        cancel=cancel,
        label="Order",
    )
    if finalized:
        logger.info("Order finalized successfully")
    else:
        logger.info("Order was already valid, not finalizing again")
    return order
