"""Unit tests for the fixed-delay retry policy."""

import asyncio
from typing import Any

import pytest
import pytest_check
from bson import ObjectId
from pymongo.errors import AutoReconnect
from pytest_mock import MockerFixture, MockType

from src.core.exceptions import ConnectionDisposedError, ValidationError
from src.infrastructure.database.repository import RetryingRepository
from src.infrastructure.database.retry import with_retry

SLEEP_PATH = "src.infrastructure.database.retry.asyncio.sleep"


@pytest.fixture
def mock_sleep(mocker: MockerFixture) -> MockType:
    """Replace the retry delay with an awaitable mock."""
    return mocker.patch(SLEEP_PATH, new_callable=mocker.AsyncMock)


@pytest.mark.unit
class TestWithRetry:
    """Test the retry loop."""

    @pytest.mark.asyncio
    async def test_first_attempt_succeeds(
        self, mocker: MockerFixture, mock_sleep: MockType
    ) -> None:
        """Verify a successful call is not delayed."""
        operation = mocker.AsyncMock(return_value=42)

        assert await with_retry(operation, operation_name="answer") == 42
        operation.assert_awaited_once()
        mock_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_recovers_on_second_attempt(
        self, mocker: MockerFixture, mock_sleep: MockType
    ) -> None:
        """Verify a transient failure is retried once after the delay."""
        operation = mocker.AsyncMock(side_effect=[AutoReconnect("blip"), ["doc"]])

        result = await with_retry(operation, operation_name="find")

        with pytest_check.check:
            assert result == ["doc"]
        with pytest_check.check:
            assert operation.await_count == 2
        with pytest_check.check:
            mock_sleep.assert_awaited_once_with(3.0)

    @pytest.mark.asyncio
    async def test_exhaustion_raises_original(
        self, mocker: MockerFixture, mock_sleep: MockType
    ) -> None:
        """Verify three attempts, two delays and the last error unchanged."""
        errors = [AutoReconnect("one"), AutoReconnect("two"), AutoReconnect("three")]
        operation = mocker.AsyncMock(side_effect=errors)

        with pytest.raises(AutoReconnect) as exc_info:
            await with_retry(operation, operation_name="find")

        with pytest_check.check:
            assert exc_info.value is errors[-1]
        with pytest_check.check:
            assert operation.await_count == 3
        with pytest_check.check:
            assert mock_sleep.await_count == 2
        with pytest_check.check:
            assert sum(call.args[0] for call in mock_sleep.await_args_list) == 6.0

    @pytest.mark.asyncio
    async def test_permanent_errors_use_full_budget(
        self, mocker: MockerFixture, mock_sleep: MockType
    ) -> None:
        """Verify failures aren't classified before retrying."""
        operation = mocker.AsyncMock(side_effect=ValueError("bad filter"))

        with pytest.raises(ValueError, match="bad filter"):
            await with_retry(operation, operation_name="find")

        assert operation.await_count == 3

    @pytest.mark.asyncio
    async def test_custom_budget(
        self, mocker: MockerFixture, mock_sleep: MockType
    ) -> None:
        """Verify attempts and delay can be overridden."""
        operation = mocker.AsyncMock(side_effect=AutoReconnect("down"))

        with pytest.raises(AutoReconnect):
            await with_retry(
                operation, operation_name="find", attempts=5, delay_seconds=0.5
            )

        assert operation.await_count == 5
        assert [call.args[0] for call in mock_sleep.await_args_list] == [0.5] * 4

    @pytest.mark.asyncio
    async def test_single_attempt_never_sleeps(
        self, mocker: MockerFixture, mock_sleep: MockType
    ) -> None:
        """Verify one attempt means no delay at all."""
        operation = mocker.AsyncMock(side_effect=AutoReconnect("down"))

        with pytest.raises(AutoReconnect):
            await with_retry(operation, operation_name="find", attempts=1)

        mock_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rejects_zero_attempts(self, mocker: MockerFixture) -> None:
        """Verify an empty budget is a caller error."""
        operation = mocker.AsyncMock()

        with pytest.raises(ValidationError):
            await with_retry(operation, operation_name="find", attempts=0)

        operation.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_disposed_not_retried(
        self, mocker: MockerFixture, mock_sleep: MockType
    ) -> None:
        """Verify use after disposal fails on the first attempt."""
        operation = mocker.AsyncMock(side_effect=ConnectionDisposedError())

        with pytest.raises(ConnectionDisposedError):
            await with_retry(operation, operation_name="find")

        operation.assert_awaited_once()
        mock_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cancellation_not_retried(
        self, mocker: MockerFixture, mock_sleep: MockType
    ) -> None:
        """Verify cancellation propagates immediately."""
        operation = mocker.AsyncMock(side_effect=asyncio.CancelledError())

        with pytest.raises(asyncio.CancelledError):
            await with_retry(operation, operation_name="find")

        operation.assert_awaited_once()
        mock_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cancelled_during_delay(self, mocker: MockerFixture) -> None:
        """Verify cancelling while waiting between attempts stops the loop."""
        mocker.patch(
            SLEEP_PATH,
            new_callable=mocker.AsyncMock,
            side_effect=asyncio.CancelledError(),
        )
        operation = mocker.AsyncMock(side_effect=AutoReconnect("down"))

        with pytest.raises(asyncio.CancelledError):
            await with_retry(operation, operation_name="find")

        operation.assert_awaited_once()


@pytest.mark.unit
class TestRetryingRepository:
    """Test the retrying read operations."""

    @pytest.mark.asyncio
    async def test_find_retries_then_succeeds(
        self,
        mock_sleep: MockType,
        retrying_repository: RetryingRepository[Any],
        mock_collection: MockType,
        make_cursor: Any,
    ) -> None:
        """Verify a failed query is repeated against the store."""
        entity_id = ObjectId()
        mock_collection.find.side_effect = [
            AutoReconnect("primary stepped down"),
            make_cursor([{"_id": entity_id, "name": "Ada"}]),
        ]

        result = await retrying_repository.find_all_by_predicate_with_retry(
            {"name": "Ada"}
        )

        with pytest_check.check:
            assert [entity.id for entity in result] == [entity_id]
        with pytest_check.check:
            assert mock_collection.find.call_count == 2
        with pytest_check.check:
            mock_sleep.assert_awaited_once_with(3.0)

    @pytest.mark.asyncio
    async def test_exists_exhausts_budget(
        self,
        mock_sleep: MockType,
        retrying_repository: RetryingRepository[Any],
        mock_collection: MockType,
    ) -> None:
        """Verify exists gives up after three attempts."""
        mock_collection.count_documents.side_effect = AutoReconnect("down")

        with pytest.raises(AutoReconnect):
            await retrying_repository.exists_with_retry({"name": "Ada"})

        assert mock_collection.count_documents.await_count == 3
        assert mock_sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_class_level_budget(
        self,
        mocker: MockerFixture,
        mock_sleep: MockType,
        retrying_repository: RetryingRepository[Any],
    ) -> None:
        """Verify subclass-style budget overrides reach with_retry."""
        mock_with_retry = mocker.patch(
            "src.infrastructure.database.repository.with_retry",
            new_callable=mocker.AsyncMock,
            return_value=True,
        )
        retrying_repository.retry_attempts = 2
        retrying_repository.retry_delay_seconds = 0.1

        assert await retrying_repository.exists_with_retry({"name": "Ada"}) is True

        kwargs = mock_with_retry.await_args.kwargs
        assert kwargs == {
            "operation_name": "Customer.exists",
            "attempts": 2,
            "delay_seconds": 0.1,
        }
