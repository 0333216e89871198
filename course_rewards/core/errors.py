"""Domain exceptions.

Input problems (``NotEnrolledError``, ``UnknownLessonError``,
``InvalidAddressError``, ...) are raised synchronously to the caller and
mapped to HTTP status codes by the routers.

Chain problems (``ChainUnavailableError``, ``ChainRejectedError``) are
raised by the token contract adapters and caught by the ChainReconciler,
which records them on the RewardRecord instead of propagating them.
"""

from __future__ import annotations


class RewardsError(Exception):
    """Base class for every error this service raises on purpose."""


class UnknownCourseError(RewardsError):
    pass


class UnknownStudentError(RewardsError):
    pass


class AlreadyEnrolledError(RewardsError):
    pass


class NotEnrolledError(RewardsError):
    pass


class UnknownLessonError(RewardsError):
    pass


class InvalidAddressError(RewardsError):
    """Student has no usable wallet address but the chain needs one."""


class RetryNotAllowedError(RewardsError):
    """retry_award called on a record that is not in ``failed`` status."""


class DuplicateAwardAttempt(RewardsError):
    """A second RewardRecord insert for the same pair lost the race.

    Internal signal only: the ledger answers it by re-reading the record
    that won.
    """


class ChainError(RewardsError):
    kind = "chain_error"


class ChainUnavailableError(ChainError):
    """RPC/network failure, or no receipt within the confirmation timeout."""

    kind = "chain_unavailable"


class ChainRejectedError(ChainError):
    """The transaction reverted or the signer refused it."""

    kind = "chain_rejected"

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason
