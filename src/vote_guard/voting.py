"""Vote submission with biometric gating and idempotency."""

import asyncio
import logging
import time
import uuid
from typing import Any, Optional

from .api.client import ApiClient
from .errors import ApiError, AuthenticationError, ErrorType, VoteSubmissionError
from .messages import VOTE_ERRORS, get_error_message, vote_error_message
from .verification import BiometricVerifier

logger = logging.getLogger(__name__)

BIOMETRIC_REGISTRATION_REQUIRED = "BIOMETRIC_REGISTRATION_REQUIRED"


def make_idempotency_key(award_id: str, nominee_id: str) -> str:
    """Return a fresh key identifying one vote submission."""
    return f"vote_{award_id}_{nominee_id}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


class VoteSubmitter:
    """Submits votes, running the configured verifier first.

    One submission gets one idempotency key, which every retry of that
    submission reuses, so a retried POST can never record a second vote.
    """

    def __init__(self, api_client: ApiClient, verifier: Optional[BiometricVerifier] = None):
        self.api = api_client
        self.verifier = verifier

    def has_voted(self, award_id: str) -> bool:
        """True if the vote history already holds a vote for ``award_id``.

        An unreadable history counts as "not voted"; the backend rejects a
        real duplicate anyway.
        """
        try:
            votes = self.api.get_vote_history()
        except AuthenticationError:
            raise
        except ApiError as e:
            logger.warning(f"Could not load vote history: {e}")
            return False
        return any(v.award_id == award_id for v in votes)

    def submit(
        self,
        award_id: str,
        nominee_id: str,
        biometric_verified: bool = False,
        idempotency_key: Optional[str] = None,
    ) -> Any:
        """POST the vote, retrying transient failures with the same key.

        Raises:
            VoteSubmissionError: Backend rejected the vote
            AuthenticationError: Session expired and could not be refreshed
        """
        key = idempotency_key or make_idempotency_key(award_id, nominee_id)
        logger.info(f"Submitting vote for award {award_id} (key {key})")
        try:
            return self.api.with_retry(
                lambda: self.api.submit_vote(award_id, nominee_id, key, biometric_verified)
            )
        except AuthenticationError:
            raise
        except ApiError as e:
            if e.code in VOTE_ERRORS:
                message = vote_error_message(e.code)
            else:
                message = get_error_message(e)
            logger.error(f"Vote submission failed: {e.code} {e.message}")
            raise VoteSubmissionError(message, e.code, e) from e

    async def submit_with_verification(
        self,
        award_id: str,
        nominee_id: str,
        subject_id: str,
    ) -> Any:
        """Pre-check history, verify the voter, then submit.

        Raises:
            VoteSubmissionError: Already voted, verification failed, or rejected
        """
        if await asyncio.to_thread(self.has_voted, award_id):
            raise VoteSubmissionError(VOTE_ERRORS["DUPLICATE_VOTE"], "DUPLICATE_VOTE")

        biometric_verified = False
        if self.verifier is not None:
            outcome = await self.verifier.verify(award_id, subject_id)
            if not outcome.success:
                logger.warning(f"Biometric verification failed: {outcome.error_code}")
                raise VoteSubmissionError(
                    outcome.message or VOTE_ERRORS["BIOMETRIC_VERIFICATION_FAILED"],
                    "BIOMETRIC_VERIFICATION_FAILED",
                )
            biometric_verified = self.verifier.name != "none"

        key = make_idempotency_key(award_id, nominee_id)
        return await asyncio.to_thread(self.submit, award_id, nominee_id, biometric_verified, key)

    def is_biometric_verification_required(self) -> bool:
        """Check whether the backend demands biometric registration first."""
        try:
            self.api.request("GET", "/votes/my-history")
        except ApiError as e:
            return (
                e.error_type == ErrorType.BIOMETRIC_ERROR
                and e.code == BIOMETRIC_REGISTRATION_REQUIRED
            )
        return False
