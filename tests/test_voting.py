"""Tests for vote submission."""

import asyncio
from unittest.mock import MagicMock

import pytest
import requests

from test_api_client import _response


class FakeVoteBackend:
    """POST /votes honouring Idempotency-Key, plus a vote history."""

    def __init__(self, history=None, fail_first=0):
        self.history = history or []
        self.fail_first = fail_first
        self.by_key = {}
        self.recorded = []
        self.vote_calls = []

    def __call__(self, method, url, json=None, headers=None, timeout=None):
        if url.endswith("/votes/my-history"):
            return _response(200, {"votes": self.history})

        self.vote_calls.append(dict(headers))
        if self.fail_first:
            self.fail_first -= 1
            raise requests.ConnectionError("connection reset")

        key = headers["Idempotency-Key"]
        if key not in self.by_key:
            vote = {"_id": f"vote-{len(self.recorded) + 1}", **json}
            self.recorded.append(vote)
            self.by_key[key] = {"success": True, "vote": vote}
        return _response(201, self.by_key[key])


@pytest.fixture
def backend():
    return FakeVoteBackend()


@pytest.fixture
def api(backend, api_config, retry_config):
    from vote_guard.api.client import ApiClient

    http = MagicMock(spec=requests.Session)
    http.request.side_effect = backend
    return ApiClient(
        access_token="t",
        session=http,
        config=api_config,
        retry_config=retry_config,
        sleep=lambda seconds: None,
    )


class StubVerifier:
    """Verifier returning a fixed outcome."""

    def __init__(self, outcome, name="facial"):
        self.outcome = outcome
        self.name = name
        self.calls = []

    async def verify(self, scope_id, subject_id):
        self.calls.append((scope_id, subject_id))
        return self.outcome


class TestSubmit:
    """Test cases for VoteSubmitter.submit()."""

    def test_same_key_returns_first_result(self, api, backend):
        """Test repeating a submission with its key records one vote."""
        from vote_guard.voting import VoteSubmitter

        submitter = VoteSubmitter(api)

        first = submitter.submit("award-1", "nominee-1", idempotency_key="key-1")
        second = submitter.submit("award-1", "nominee-1", idempotency_key="key-1")

        assert first == second
        assert len(backend.recorded) == 1

    def test_retries_reuse_the_key(self, api, backend):
        """Test every retry of one submission carries the same key."""
        from vote_guard.voting import VoteSubmitter

        backend.fail_first = 2

        result = VoteSubmitter(api).submit("award-1", "nominee-1")

        keys = {headers["Idempotency-Key"] for headers in backend.vote_calls}
        assert len(backend.vote_calls) == 3
        assert len(keys) == 1
        assert result["success"] is True
        assert len(backend.recorded) == 1

    def test_separate_submissions_get_new_keys(self):
        """Test keys are unique per submission."""
        from vote_guard.voting import make_idempotency_key

        first = make_idempotency_key("award-1", "nominee-1")
        second = make_idempotency_key("award-1", "nominee-1")

        assert first != second
        assert first.startswith("vote_award-1_nominee-1_")

    def test_backend_codes_map_to_sentences(self, api_config, retry_config):
        """Test known backend codes give their sentence."""
        from vote_guard.api.client import ApiClient
        from vote_guard.errors import VoteSubmissionError
        from vote_guard.messages import VOTE_ERRORS
        from vote_guard.voting import VoteSubmitter

        http = MagicMock(spec=requests.Session)
        http.request.return_value = _response(409, {"error": {"code": "DUPLICATE_VOTE", "message": "dup"}})
        api = ApiClient(access_token="t", session=http, config=api_config, retry_config=retry_config)

        with pytest.raises(VoteSubmissionError) as exc_info:
            VoteSubmitter(api).submit("award-1", "nominee-1")

        assert exc_info.value.code == "DUPLICATE_VOTE"
        assert exc_info.value.message == VOTE_ERRORS["DUPLICATE_VOTE"]
        assert http.request.call_count == 1


class TestSubmitWithVerification:
    """Test cases for the verified vote flow."""

    def test_verified_vote_sets_header(self, api, backend):
        """Test a successful verification submits with Biometric-Verified."""
        from vote_guard.biometrics.types import VerificationOutcome
        from vote_guard.voting import VoteSubmitter

        verifier = StubVerifier(VerificationOutcome.ok("ok"))

        result = asyncio.run(
            VoteSubmitter(api, verifier).submit_with_verification("award-1", "nominee-1", "user-1")
        )

        assert result["success"] is True
        assert verifier.calls == [("award-1", "user-1")]
        assert backend.vote_calls[0]["Biometric-Verified"] == "true"

    def test_failed_verification_blocks_vote(self, api, backend):
        """Test no POST happens when verification fails."""
        from vote_guard.biometrics.types import VerificationOutcome
        from vote_guard.errors import VoteSubmissionError
        from vote_guard.voting import VoteSubmitter

        verifier = StubVerifier(VerificationOutcome.failure(
            "This person has already voted. Previous vote detected with 92% confidence.",
            "DUPLICATE_DETECTED",
        ))

        with pytest.raises(VoteSubmissionError) as exc_info:
            asyncio.run(
                VoteSubmitter(api, verifier).submit_with_verification("award-1", "nominee-1", "user-1")
            )

        assert exc_info.value.code == "BIOMETRIC_VERIFICATION_FAILED"
        assert "already voted" in exc_info.value.message
        assert backend.vote_calls == []

    def test_already_voted_skips_verification(self, api, backend):
        """Test the history pre-check short-circuits."""
        from vote_guard.biometrics.types import VerificationOutcome
        from vote_guard.errors import VoteSubmissionError
        from vote_guard.voting import VoteSubmitter

        backend.history = [{"awardId": "award-1", "nomineeId": "nominee-9"}]
        verifier = StubVerifier(VerificationOutcome.ok("ok"))

        with pytest.raises(VoteSubmissionError) as exc_info:
            asyncio.run(
                VoteSubmitter(api, verifier).submit_with_verification("award-1", "nominee-1", "user-1")
            )

        assert exc_info.value.code == "DUPLICATE_VOTE"
        assert verifier.calls == []

    def test_no_verifier_omits_header(self, api, backend):
        """Test the header is only sent after a real verification."""
        from vote_guard.biometrics.types import VerificationOutcome
        from vote_guard.voting import VoteSubmitter

        verifier = StubVerifier(VerificationOutcome.ok("not required"), name="none")

        asyncio.run(VoteSubmitter(api, verifier).submit_with_verification("award-1", "nominee-1", "user-1"))

        assert "Biometric-Verified" not in backend.vote_calls[0]


class TestBiometricRequirement:
    """Test cases for is_biometric_verification_required()."""

    def test_registration_required(self, api_config, retry_config):
        """Test the biometric-registration error is detected."""
        from vote_guard.api.client import ApiClient
        from vote_guard.voting import VoteSubmitter

        http = MagicMock(spec=requests.Session)
        http.request.return_value = _response(428, {"error": {"code": "BIOMETRIC_REGISTRATION_REQUIRED"}})
        api = ApiClient(access_token="t", session=http, config=api_config, retry_config=retry_config)

        assert VoteSubmitter(api).is_biometric_verification_required() is True

    def test_not_required(self, api):
        """Test a readable history means no requirement."""
        from vote_guard.voting import VoteSubmitter

        assert VoteSubmitter(api).is_biometric_verification_required() is False
