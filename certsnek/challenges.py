"""
HTTP-01 challenge coordination.

A challenge moves through discovered, fulfilled and triggered, and then ends
as valid, invalid or timed out. Discovery reads the order's authorizations,
fulfillment is delegated to a ChallengeResponder, and the outcome is decided
by polling the CA.
"""

import logging
from typing import List, Optional, Sequence

from .errors import ChallengeError, ChallengeInvalid, ChallengeTimeout
from .models import Authorization, Challenge, ChallengeData, Status
from .polling import CancelToken, PollPolicy, poll_until
from .responders import as_responder

logger = logging.getLogger(__name__)

HTTP_01 = "http-01"


def get_http_challenges(authorizations: Sequence[Authorization]) -> List[Challenge]:
    """
    Select the HTTP-01 challenge of every authorization, in order.

    Raises:
        ChallengeError: If an authorization does not offer HTTP-01
    """
    http_challenges = []
    for authorization in authorizations:
        challenge = authorization.find_challenge(HTTP_01)
        if challenge is None:
            raise ChallengeError(
                f"HTTP-01 challenge was not offered for {authorization.identifier}"
            )
        http_challenges.append(challenge)
    return http_challenges


def get_challenge_data(challenge: Challenge) -> ChallengeData:
    """Extract the data required to fulfill the challenge."""
    return ChallengeData(token=challenge.token, authorization=challenge.authorization)


def handle_challenge(challenge_data: ChallengeData, responder) -> ChallengeData:
    """
    Hand the challenge data to the responder. Returns once the responder does;
    servability is not verified here.
    """
    as_responder(responder).fulfill(challenge_data)
    return challenge_data


def _invalid(challenge: Challenge, attempts: int) -> ChallengeInvalid:
    detail = f": {challenge.error}" if challenge.error else ""
    return ChallengeInvalid(
        f"challenge failed: status is {challenge.status.value}{detail}",
        challenge,
        detail=challenge.error,
    )


def _timeout(challenge: Challenge, attempts: int) -> ChallengeTimeout:
    return ChallengeTimeout(
        f"challenge failed: maximum attempts reached ({attempts})",
        challenge,
        attempts=attempts,
    )


def poll_challenge(gateway, challenge: Challenge, policy: Optional[PollPolicy] = None,
                   cancel: Optional[CancelToken] = None) -> Challenge:
    """Poll a triggered challenge until it is valid."""
    return poll_until(
        lambda: gateway.refresh_challenge(challenge),
        {Status.VALID},
        policy or PollPolicy(),
        _invalid,
        _timeout,
        cancel=cancel,
        label=f"Challenge {challenge.token}",
    )


def _await_valid(gateway, triggered: Challenge, policy: Optional[PollPolicy],
                 cancel: Optional[CancelToken]) -> Challenge:
    if triggered.status is Status.VALID:
        logger.info(f"Challenge valid: {triggered.url}")
        return triggered
    challenge = poll_challenge(gateway, triggered, policy, cancel)
    logger.info(f"Challenge valid: {challenge.url}")
    return challenge


def start_challenge(gateway, challenge: Challenge, policy: Optional[PollPolicy] = None,
                    cancel: Optional[CancelToken] = None) -> Challenge:
    """
    Trigger CA-side validation and wait for the challenge to become valid.

    A trigger answered with ``valid`` needs no polling.

    Raises:
        ChallengeInvalid: If the CA reports the challenge as invalid
        ChallengeTimeout: If all attempts are used up without a valid status
    """
    return _await_valid(gateway, gateway.trigger_challenge(challenge), policy, cancel)


def start_challenges(gateway, challenges: Sequence[Challenge], policy: Optional[PollPolicy] = None,
                     cancel: Optional[CancelToken] = None) -> List[Challenge]:
    """Trigger every challenge first, then wait for each of them."""
    triggered = [gateway.trigger_challenge(challenge) for challenge in challenges]
    return [_await_valid(gateway, challenge, policy, cancel) for challenge in triggered]
