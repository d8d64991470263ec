"""
Certificate issuance via the HTTP-01 challenge.

The issuance is a stack of steps. Each step takes the context, reads the
keys it requires and returns the context with its own keys added. The
default stack is LETSENCRYPT_VIA_HTTP_STEPS; replace or drop steps to change
the process, e.g. swap ``prepare_files`` for a step that picks other file
locations.

Example:

    context = letsencrypt_via_http({
        "folder": "certs",
        "domains": ["example.com"],
        "staging": True,
        "responder": StandaloneResponder(port=80),
    })
"""

import logging
from typing import Mapping, Optional, Sequence

from . import challenges as challenge_coordinator
from . import finalize, storage
from .config import IssuanceConfig
from .gateway import AcmeGateway, new_session
from .keys import KEY_SIZE, load_or_create_key_pair
from .models import Status
from .pipeline import Context, Step, compose, step
from .polling import CancelToken, PollPolicy
from .responders import as_responder

logger = logging.getLogger(__name__)


def _policy(context: Context) -> PollPolicy:
    return context.get("poll_policy") or PollPolicy()


@step(requires=("folder",), provides=("files",))
def prepare_files(context: Context) -> Context:
    """Add the file locations, all inside ``folder``, as ``files``."""
    return context.assoc(files=storage.FileLayout.in_folder(context["folder"]))


@step(requires=("files",), provides=("user_key_pair", "domain_key_pair"))
def load_or_create_key_pairs(context: Context) -> Context:
    files = context["files"]
    key_size = context.get("key_size") or KEY_SIZE
    return context.assoc(
        user_key_pair=load_or_create_key_pair(files.user_key_file, key_size),
        domain_key_pair=load_or_create_key_pair(files.domain_key_file, key_size),
    )


@step(requires=("domains", "user_key_pair"), provides=("session", "gateway", "account", "order"))
def create_order(context: Context) -> Context:
    """
    Bind the account to the user key pair and order the certificate.

    ``gateway_factory`` may be set to replace ``AcmeGateway.connect``.
    """
    domains, user_key_pair = context.require("domains", "user_key_pair")
    session = new_session(context.get("staging", False), context.get("directory_url"))
    connect = context.get("gateway_factory") or AcmeGateway.connect
    gateway = connect(session, user_key_pair)
    account = gateway.find_or_register_account(context.get("email"))
    order = gateway.create_order(domains)
    return context.assoc(session=session, gateway=gateway, account=account, order=order)


@step(requires=("gateway", "order", "responder"), provides=("authorizations", "challenges", "challenge"))
def handle_http_challenges(context: Context) -> Context:
    """
    Hand the HTTP-01 challenge of every pending authorization to the
    ``responder``. Authorizations the CA already considers valid are skipped.
    """
    gateway, order = context.require("gateway", "order")
    responder = as_responder(context["responder"])
    authorizations = gateway.fetch_authorizations(order)
    pending = [authz for authz in authorizations if authz.status is not Status.VALID]
    for authz in authorizations:
        if authz.status is Status.VALID:
            logger.info(f"Authorization for {authz.identifier} is already valid")

    http_challenges = challenge_coordinator.get_http_challenges(pending)
    for challenge in http_challenges:
        data = challenge_coordinator.get_challenge_data(challenge)
        challenge_coordinator.handle_challenge(data, responder)

    return context.assoc(
        authorizations=authorizations,
        challenges=http_challenges,
        challenge=http_challenges[0] if http_challenges else None,
    )


@step(requires=("gateway", "challenges", "responder"), provides=("challenges", "challenge"))
def start_challenges(context: Context) -> Context:
    """
    Trigger every challenge, then wait until each of them is valid.

    The responder stops serving the challenges afterwards, whether they were
    validated or not.
    """
    gateway, http_challenges, responder = context.require("gateway", "challenges", "responder")
    responder = as_responder(responder)
    try:
        validated = challenge_coordinator.start_challenges(
            gateway, http_challenges, _policy(context), context.get("cancel")
        )
    finally:
        for challenge in http_challenges:
            responder.cleanup(challenge_coordinator.get_challenge_data(challenge))
    return context.assoc(
        challenges=validated,
        challenge=validated[0] if validated else None,
    )


@step(requires=("domains", "domain_key_pair"), provides=("csr_pem",))
def certificate_signing_request(context: Context) -> Context:
    domains, domain_key_pair = context.require("domains", "domain_key_pair")
    return context.assoc(csr_pem=finalize.build_csr(domain_key_pair, domains))


@step(requires=("csr_pem", "files"))
def store_csr_file(context: Context) -> Context:
    storage.store_csr(context["csr_pem"], context["files"].domain_csr_file)
    return context


@step(requires=("gateway", "order", "csr_pem"), provides=("order", "order_executed"))
def execute_order(context: Context) -> Context:
    """Finalize the order with the CSR and wait until it is valid."""
    gateway, order, csr_pem = context.require("gateway", "order", "csr_pem")
    order = finalize.execute_order(gateway, order, csr_pem, _policy(context), context.get("cancel"))
    return context.assoc(order=order, order_executed=True)


@step(requires=("gateway", "order"), provides=("certificate",))
def get_certificate(context: Context) -> Context:
    gateway, order = context.require("gateway", "order")
    return context.assoc(certificate=gateway.get_certificate(order))


@step(requires=("certificate", "files"))
def store_certificate(context: Context) -> Context:
    storage.store_certificate(context["certificate"], context["files"].domain_chain_file)
    return context


@step(requires=("files",), provides=("keystore",))
def create_keystore(context: Context) -> Context:
    """Also create a keystore that Java servers like Jetty can use for TLS."""
    files = context["files"]
    keystore = storage.create_keystore(
        files.domain_key_file,
        files.domain_chain_file,
        context.get("password"),
        files.keystore_file,
    )
    return context.assoc(keystore=keystore)


# The full stack of steps needed to receive a certificate by fulfilling
# HTTP-01 challenges.
LETSENCRYPT_VIA_HTTP_STEPS = (
    prepare_files,
    load_or_create_key_pairs,
    create_order,
    handle_http_challenges,
    start_challenges,
    certificate_signing_request,
    store_csr_file,
    execute_order,
    get_certificate,
    store_certificate,
    create_keystore,
)


def letsencrypt_via_http(context: Mapping, steps: Sequence[Step] = LETSENCRYPT_VIA_HTTP_STEPS) -> Context:
    """
    Run the HTTP-01 issuance. ``folder`` holds the files of the process and
    missing ones are created.
    """
    return compose(steps)(context)


def initial_context(config: IssuanceConfig, responder, cancel: Optional[CancelToken] = None) -> Context:
    """Build the starting context for an issuance from its configuration."""
    if cancel is None and config.timeout:
        cancel = CancelToken(deadline=config.timeout)
    return Context(
        folder=config.folder,
        domains=list(config.domains),
        staging=config.staging,
        directory_url=config.directory_url,
        email=config.email,
        key_size=config.key_size,
        password=config.keystore_password,
        responder=responder,
        poll_policy=PollPolicy(max_attempts=config.poll_attempts, interval=config.poll_interval),
        cancel=cancel,
    )


def issue_certificate(config: IssuanceConfig, responder, cancel: Optional[CancelToken] = None,
                      steps: Sequence[Step] = LETSENCRYPT_VIA_HTTP_STEPS) -> Context:
    """
    Issue a certificate for the configured domains.

    Args:
        config: The issuance configuration
        responder: ChallengeResponder, or a function taking ChallengeData
        cancel: Optional cancellation token for the polling loops
        steps: The step stack to run

    Returns:
        The final context, holding the order, certificate and keystore path

    Raises:
        PipelineError: Naming the step that failed
    """
    config.validate()
    logger.info(f"Getting certificate for domains: {config.domains}")
    return letsencrypt_via_http(initial_context(config, responder, cancel), steps)
