"""
Test cases for bounded retry with exponential backoff.
"""

from unittest.mock import MagicMock

import pytest

from kb_retrieval.core.errors import BackendRequestError, TransientBackendError
from kb_retrieval.core.retry import with_retry


def test_returns_first_success():
    fn = MagicMock(return_value="ok")
    sleep = MagicMock()
    assert with_retry(fn, sleep=sleep) == "ok"
    assert fn.call_count == 1
    sleep.assert_not_called()


def test_retries_transient_errors_with_doubling_delay():
    fn = MagicMock(side_effect=[TransientBackendError("503"), TransientBackendError("503"), "ok"])
    sleep = MagicMock()

    assert with_retry(fn, max_retries=3, base_delay_ms=1000, sleep=sleep) == "ok"

    assert fn.call_count == 3
    assert [c.args[0] for c in sleep.call_args_list] == [1.0, 2.0]


def test_gives_up_after_max_retries_plus_one_attempts():
    fn = MagicMock(side_effect=TransientBackendError("timeout"))
    sleep = MagicMock()

    with pytest.raises(TransientBackendError) as exc_info:
        with_retry(fn, operation="remote.search", max_retries=3, base_delay_ms=100, sleep=sleep)

    assert fn.call_count == 4
    assert [c.args[0] for c in sleep.call_args_list] == [0.1, 0.2, 0.4]
    assert "after 4 attempts" in str(exc_info.value)


def test_non_retryable_errors_short_circuit():
    """A malformed request fails on the first attempt."""
    fn = MagicMock(side_effect=BackendRequestError("bad request", status_code=400))
    sleep = MagicMock()

    with pytest.raises(BackendRequestError):
        with_retry(fn, max_retries=3, sleep=sleep)

    assert fn.call_count == 1
    sleep.assert_not_called()


def test_negative_retries_rejected():
    with pytest.raises(ValueError):
        with_retry(lambda: None, max_retries=-1)
