"""Unit tests for the bounded retry wrapper."""

from unittest.mock import AsyncMock, call, patch

import pytest

from spotbot.exceptions import ErrorKind, NotFoundError, SpotifyAPIException, UnauthorizedError
from spotbot.models import CredentialKind
from spotbot.services.retry import retrying, with_retry


@pytest.mark.asyncio
async def test_with_retry_success_first_attempt():
    """Test a successful call runs once."""
    operation = AsyncMock(return_value="ok")

    result = await with_retry(operation, "test op", retries=3, initial_backoff=0)

    assert result == "ok"
    operation.assert_awaited_once()


@pytest.mark.asyncio
async def test_with_retry_recovers_after_transient_failure():
    """Test a retryable failure is followed by another attempt."""
    operation = AsyncMock(side_effect=[SpotifyAPIException("Boom"), "ok"])

    result = await with_retry(operation, "test op", retries=3, initial_backoff=0)

    assert result == "ok"
    assert operation.await_count == 2


@pytest.mark.asyncio
async def test_with_retry_non_retryable_raises_immediately():
    """Test NotFoundError is never retried."""
    operation = AsyncMock(side_effect=NotFoundError("No such track"))

    with pytest.raises(NotFoundError):
        await with_retry(operation, "test op", retries=5, initial_backoff=0)

    operation.assert_awaited_once()


@pytest.mark.asyncio
async def test_with_retry_exhaustion_reraises_last_error():
    """Test retries+1 attempts are made and the final error propagates unchanged."""
    errors = [SpotifyAPIException(f"Boom {i}", kind=ErrorKind.SERVER) for i in range(3)]
    operation = AsyncMock(side_effect=errors)

    with pytest.raises(SpotifyAPIException) as exc_info:
        await with_retry(operation, "test op", retries=2, initial_backoff=0)

    assert exc_info.value is errors[-1]
    assert operation.await_count == 3


@pytest.mark.asyncio
async def test_with_retry_zero_retries():
    """Test retries=0 means a single attempt."""
    operation = AsyncMock(side_effect=SpotifyAPIException("Boom"))

    with pytest.raises(SpotifyAPIException):
        await with_retry(operation, "test op", retries=0, initial_backoff=0)

    operation.assert_awaited_once()


@pytest.mark.asyncio
async def test_with_retry_unauthorized_reauthenticates_named_kind():
    """Test a 401 repairs the credential it names before retrying."""
    operation = AsyncMock(side_effect=[UnauthorizedError(credential_kind="web"), "ok"])
    reauthenticate = AsyncMock()

    result = await with_retry(operation, "test op", retries=3, reauthenticate=reauthenticate, initial_backoff=0)

    assert result == "ok"
    reauthenticate.assert_awaited_once_with(CredentialKind.WEB)


@pytest.mark.asyncio
async def test_with_retry_no_reauth_for_other_errors():
    """Test reauthentication only follows UnauthorizedError."""
    operation = AsyncMock(side_effect=[SpotifyAPIException("Boom"), "ok"])
    reauthenticate = AsyncMock()

    await with_retry(operation, "test op", retries=3, reauthenticate=reauthenticate, initial_backoff=0)

    reauthenticate.assert_not_awaited()


@pytest.mark.asyncio
async def test_with_retry_backoff_doubles():
    """Test the delay between attempts doubles."""
    operation = AsyncMock(side_effect=[SpotifyAPIException("1"), SpotifyAPIException("2"), "ok"])

    with patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
        await with_retry(operation, "test op", retries=3, initial_backoff=0.25)

    assert mock_sleep.await_args_list == [call(0.25), call(0.5)]


class _FakeClient:
    def __init__(self, credentials):
        self.credentials = credentials
        self.retries = 1
        self.retry_backoff = 0
        self.calls = 0

    @retrying("fake call")
    async def fetch(self, value):
        self.calls += 1
        if self.calls == 1:
            raise UnauthorizedError(credential_kind="official")
        return value * 2


@pytest.mark.asyncio
async def test_retrying_decorator_uses_client_credentials(mock_credentials):
    """Test the decorator reads retries and the repair action from the instance."""
    client = _FakeClient(mock_credentials)

    result = await client.fetch(21)

    assert result == 42
    assert client.calls == 2
    mock_credentials.reauthenticate.assert_awaited_once_with(CredentialKind.OFFICIAL)
