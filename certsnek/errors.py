"""
Exceptions raised while issuing a certificate.

Every failure that aborts an issuance derives from IssuanceError. File system
failures are left as OSError so the offending path stays on the exception.
"""

from typing import Any, Optional


class IssuanceError(Exception):
    """Base class for all certificate issuance failures."""


class KeyMaterialError(IssuanceError):
    """An existing key file could not be parsed."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class AccountError(IssuanceError):
    """The CA rejected the account registration or could not be reached."""


class AcmeProtocolError(IssuanceError):
    """A request to the CA failed outside of account registration."""


class ChallengeError(IssuanceError):
    """The HTTP-01 challenge could not be completed."""

    def __init__(self, message: str, challenge: Any = None):
        super().__init__(message)
        self.challenge = challenge


class ChallengeInvalid(ChallengeError):
    """The CA marked the challenge as invalid."""

    def __init__(self, message: str, challenge: Any = None, detail: Optional[str] = None):
        super().__init__(message, challenge)
        self.detail = detail


class ChallengeTimeout(ChallengeError):
    """The challenge did not become valid within the permitted attempts."""

    def __init__(self, message: str, challenge: Any = None, attempts: int = 0):
        super().__init__(message, challenge)
        self.attempts = attempts


class OrderError(IssuanceError):
    """The order could not be finalized or its certificate retrieved."""

    def __init__(self, message: str, order: Any = None):
        super().__init__(message)
        self.order = order


class OrderInvalid(OrderError):
    """The CA marked the order as invalid."""


class OrderTimeout(OrderError):
    """The order did not become valid within the permitted attempts."""

    def __init__(self, message: str, order: Any = None, attempts: int = 0):
        super().__init__(message, order)
        self.attempts = attempts


class Cancelled(IssuanceError):
    """Polling was cancelled or ran past its deadline."""


class ConversionError(IssuanceError):
    """The keystore container could not be built."""


class MissingContextKey(IssuanceError):
    """A step ran without a context key it requires."""

    def __init__(self, keys, step: Optional[str] = None):
        self.keys = tuple(keys)
        self.step = step
        where = f" for step {step}" if step else ""
        super().__init__(f"Missing context key(s){where}: {', '.join(self.keys)}")


class PipelineError(IssuanceError):
    """
    A pipeline step failed.

    Carries the failing step and the context it was given so callers can
    inspect the partial results at the failure boundary.
    """

    def __init__(self, step: str, index: int, context, cause: BaseException):
        super().__init__(f"Step {index} ({step}) failed: {cause}")
        self.step = step
        self.index = index
        self.context = context
        self.cause = cause
