"""
Unit tests for cancellation tokens.
"""

import pytest

from clarity.core.cancellation import CancelToken
from clarity.errors import OperationCancelled


class TestCancelToken:
    """Test explicit cancel and deadlines."""

    def test_fresh_token_is_not_cancelled(self):
        token = CancelToken()
        assert not token.cancelled
        token.raise_if_cancelled()

    def test_cancel(self):
        token = CancelToken()
        token.cancel()
        assert token.cancelled
        with pytest.raises(OperationCancelled, match="ingestion cancelled"):
            token.raise_if_cancelled("ingestion")

    def test_deadline(self):
        token = CancelToken(timeout_seconds=0)
        assert token.cancelled
        with pytest.raises(OperationCancelled, match="deadline exceeded"):
            token.raise_if_cancelled()

    def test_distant_deadline(self):
        assert not CancelToken(timeout_seconds=3600).cancelled
