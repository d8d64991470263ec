"""
Access to the ACME certificate authority.

Wraps ``acme.client.ClientV2`` and converts every CA response into an
immutable snapshot from ``certsnek.models``. Nothing here mutates a snapshot;
refreshing a resource always returns a new one.
"""

import logging
from contextlib import contextmanager
from typing import List, Optional, Sequence, Type

import josepy as jose
import requests
from acme import challenges, client, messages
from acme import errors as acme_errors

from .errors import AccountError, AcmeProtocolError, IssuanceError, OrderError
from .models import Account, Authorization, Challenge, Order, Session, Status

logger = logging.getLogger(__name__)

# Let's Encrypt directory URLs
LETSENCRYPT_DIRECTORY_URL = 'https://acme-v02.api.letsencrypt.org/directory'
LETSENCRYPT_STAGING_DIRECTORY_URL = 'https://acme-staging-v02.api.letsencrypt.org/directory'

USER_AGENT = "certsnek"

CA_ERRORS = (acme_errors.Error, messages.Error, requests.exceptions.RequestException)


def new_session(staging: bool = False, directory_url: Optional[str] = None) -> Session:
    """
    Select the CA endpoint. No network call is made.

    Args:
        staging: Use the Let's Encrypt staging environment
        directory_url: Explicit directory URL, overrides ``staging``
    """
    if directory_url is None:
        directory_url = LETSENCRYPT_STAGING_DIRECTORY_URL if staging else LETSENCRYPT_DIRECTORY_URL
    return Session(directory_url=directory_url, staging=staging)


@contextmanager
def ca_errors(message: str, error_cls: Type[IssuanceError] = AcmeProtocolError):
    """Translate acme and requests failures into ``error_cls``."""
    try:
        yield
    except CA_ERRORS as e:
        raise error_cls(f"{message}: {e}") from e


def _error_detail(error) -> Optional[str]:
    if error is None:
        return None
    return getattr(error, "detail", None) or str(error)


def _status(value) -> Status:
    return Status.parse(value) if value is not None else Status.PENDING


class AcmeGateway:
    """
    Order, authorization and challenge operations against one CA account.
    """

    def __init__(self, acme_client: client.ClientV2, account_key: jose.JWK):
        self.client = acme_client
        self.key = account_key

    @classmethod
    def connect(cls, session: Session, account_key, user_agent: str = USER_AGENT) -> "AcmeGateway":
        """
        Fetch the directory of the session's CA and build a client for it.

        Args:
            session: The selected CA endpoint
            account_key: The user account private key
            user_agent: User-Agent sent with every request
        """
        jwk = jose.JWKRSA(key=account_key)
        net = client.ClientNetwork(jwk, user_agent=user_agent)
        logger.info(f"Getting ACME directory from {session.directory_url}")
        with ca_errors(f"Could not fetch ACME directory {session.directory_url}"):
            directory = client.ClientV2.get_directory(session.directory_url, net)
        return cls(client.ClientV2(directory, net=net), jwk)

    def _post(self, url: str, obj=None, **kwargs):
        """POST ``obj`` to ``url``; without ``obj`` this is a POST-as-GET."""
        kwargs.setdefault("new_nonce_url", self.client.directory["newNonce"])
        return self.client.net.post(url, obj, **kwargs)

    # ------------------------------------------------------------------ account

    def find_or_register_account(self, email: Optional[str] = None) -> Account:
        """
        Register the account key, agreeing to the terms of service, or look up
        the account the key is already registered with.
        """
        registration = messages.NewRegistration.from_data(
            email=email,
            terms_of_service_agreed=True,
        )
        with ca_errors("Account registration failed", AccountError):
            try:
                regr = self.client.new_account(registration)
                logger.info(f"Account registered: {regr.uri}")
            except acme_errors.ConflictError as e:
                logger.info(f"Using existing account: {e.location}")
                regr = self.client.query_registration(
                    messages.RegistrationResource(uri=e.location, body=messages.Registration())
                )
        contact = tuple(getattr(regr.body, "contact", None) or ())
        return Account(uri=regr.uri, contact=contact, body=regr)

    # ------------------------------------------------------------------ orders

    def _order(self, url: str, body: messages.Order) -> Order:
        return Order(
            url=url,
            status=_status(body.status),
            identifiers=tuple(identifier.value for identifier in body.identifiers or ()),
            authorizations=tuple(body.authorizations or ()),
            finalize=body.finalize,
            certificate=body.certificate,
            error=_error_detail(body.error),
            body=body,
        )

    def create_order(self, domains: Sequence[str]) -> Order:
        """Request a new order with one DNS identifier per domain."""
        logger.info(f"Creating order for domains: {list(domains)}")
        new_order = messages.NewOrder(identifiers=[
            messages.Identifier(typ=messages.IDENTIFIER_FQDN, value=domain)
            for domain in domains
        ])
        with ca_errors("Order creation failed"):
            response = self._post(self.client.directory["newOrder"], new_order)
            body = messages.Order.from_json(response.json())
        order = self._order(response.headers["Location"], body)
        logger.info(f"Order created: {order.url}")
        logger.debug(f"Order details: {order}")
        return order

    def refresh_order(self, order: Order) -> Order:
        with ca_errors(f"Could not fetch order {order.url}"):
            response = self._post(order.url)
            body = messages.Order.from_json(response.json())
        return self._order(order.url, body)

    def finalize_order(self, order: Order, csr_pem: bytes) -> Order:
        """Submit the CSR for signing and return the updated order."""
        logger.info(f"Finalizing order {order.url}")
        orderr = messages.OrderResource(body=order.body, uri=order.url, csr_pem=csr_pem)
        with ca_errors(f"Order finalization failed for {order.url}"):
            orderr = self.client.begin_finalization(orderr)
        return self._order(order.url, orderr.body)

    def get_certificate(self, order: Order) -> str:
        """
        Download the PEM certificate chain of a valid order.

        Raises:
            OrderError: If the order is not valid yet
        """
        if order.status is not Status.VALID or not order.certificate:
            raise OrderError(
                f"Certificate is not available, order {order.url} is {order.status.value}",
                order,
            )
        logger.info(f"Downloading certificate from: {order.certificate}")
        with ca_errors(f"Certificate download failed for {order.url}"):
            response = self._post(order.certificate)
        return response.text

    # ------------------------------------------------------------------ authorizations

    def _challenge(self, challb: messages.ChallengeBody) -> Challenge:
        chall = challb.chall
        typ = chall.typ if isinstance(chall.typ, str) else chall.to_partial_json().get("type", "unknown")
        token = authorization = None
        if isinstance(chall, challenges.HTTP01):
            token = chall.encode("token")
            authorization = chall.validation(self.key)
        return Challenge(
            url=challb.uri,
            typ=typ,
            status=_status(challb.status),
            token=token,
            authorization=authorization,
            error=_error_detail(challb.error),
            body=challb,
        )

    def _authorization(self, url: str, body: messages.Authorization) -> Authorization:
        return Authorization(
            url=url,
            identifier=body.identifier.value,
            status=_status(body.status),
            challenges=tuple(self._challenge(challb) for challb in body.challenges or ()),
        )

    def fetch_authorizations(self, order: Order) -> List[Authorization]:
        """Fetch one authorization snapshot per authorization URL of the order."""
        authorizations = []
        for url in order.authorizations:
            logger.info(f"Getting authorization: {url}")
            with ca_errors(f"Authorization retrieval failed for {url}"):
                response = self._post(url)
                body = messages.Authorization.from_json(response.json())
            authorizations.append(self._authorization(url, body))
        return authorizations

    # ------------------------------------------------------------------ challenges

    def trigger_challenge(self, challenge: Challenge) -> Challenge:
        """Tell the CA the challenge response is in place."""
        logger.info(f"Triggering challenge {challenge.url}")
        with ca_errors(f"Challenge registration failed for {challenge.url}"):
            response = challenge.body.chall.response(self.key)
            challr = self.client.answer_challenge(challenge.body, response)
        return self._challenge(challr.body)

    def refresh_challenge(self, challenge: Challenge) -> Challenge:
        with ca_errors(f"Could not fetch challenge {challenge.url}"):
            response = self._post(challenge.url)
            body = messages.ChallengeBody.from_json(response.json())
        return self._challenge(body)
