"""Tests for DailySyncExecutor: partial tolerance, idempotent upserts, one log per call."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from src.integrations.adapters.fitbit import FitbitAdapter
from src.integrations.base import SyncStatus
from src.integrations.errors import NotConnectedError, ProviderApiError, TokenRefreshError
from src.integrations.sync.daily import DailySyncExecutor
from src.integrations.tests.conftest import (
    TEST_DATE,
    TEST_USER_ID,
    InMemorySyncStore,
    make_fitbit_credential,
    make_response,
)


@pytest.fixture
def refresher() -> MagicMock:
    refresher = MagicMock()
    refresher.ensure_valid_access_token = AsyncMock(return_value="access-old")
    return refresher


@pytest.fixture
def executor(
    store: InMemorySyncStore, fitbit_adapter: FitbitAdapter, refresher: MagicMock
) -> DailySyncExecutor:
    return DailySyncExecutor(store, fitbit_adapter, refresher)


@pytest.fixture
def connected(store: InMemorySyncStore) -> None:
    store.fitbit_credentials[TEST_USER_ID] = make_fitbit_credential()


def route(responses: dict[str, object]):
    """Side effect for ``mock_http_client.get`` keyed by a URL fragment."""

    async def _get(url: str, **kwargs):
        for fragment, response in responses.items():
            if fragment in url:
                if isinstance(response, Exception):
                    raise response
                return response
        return make_response(404, {})

    return _get


@pytest.fixture
def fitbit_ok(
    fitbit_activity_raw: dict,
    fitbit_weight_raw: dict,
    fitbit_fat_raw: dict,
    fitbit_sleep_raw: dict,
) -> dict[str, object]:
    return {
        "/activities/": make_response(200, fitbit_activity_raw),
        "/body/log/weight/": make_response(200, fitbit_weight_raw),
        "/body/log/fat/": make_response(200, fitbit_fat_raw),
        "/sleep/": make_response(200, fitbit_sleep_raw),
    }


class TestSyncDay:
    @pytest.mark.asyncio
    async def test_full_day_upserts_everything_and_logs_success(
        self,
        executor: DailySyncExecutor,
        store: InMemorySyncStore,
        mock_http_client: MagicMock,
        fitbit_ok: dict,
        connected: None,
    ) -> None:
        mock_http_client.get.side_effect = route(fitbit_ok)

        result = await executor.sync_day(TEST_USER_ID, TEST_DATE)

        assert result.steps == 8000
        assert result.calories_out == 2200
        assert result.weight == pytest.approx(81.1)
        assert result.body_fat == pytest.approx(18.2)
        assert result.sleep_minutes == 450
        assert result.skipped == []

        row = store.daily_logs[(TEST_USER_ID, TEST_DATE)]
        assert row.steps == 8000
        assert row.resting_heart_rate == 58
        assert store.sleep_logs[(TEST_USER_ID, TEST_DATE)].duration_minutes == 450
        assert store.fitbit_credentials[TEST_USER_ID].last_sync_at is not None

        [log] = store.sync_logs
        assert log.status == SyncStatus.SUCCESS
        assert log.sync_date == TEST_DATE
        assert "8000 steps" in log.message

    @pytest.mark.asyncio
    async def test_weight_rate_limited_keeps_existing_weight(
        self,
        executor: DailySyncExecutor,
        store: InMemorySyncStore,
        mock_http_client: MagicMock,
        fitbit_ok: dict,
        connected: None,
    ) -> None:
        # an earlier sync already stored a weight for the date
        mock_http_client.get.side_effect = route(fitbit_ok)
        await executor.sync_day(TEST_USER_ID, TEST_DATE)

        fitbit_ok["/body/log/weight/"] = make_response(429, {"errors": []})
        mock_http_client.get.side_effect = route(fitbit_ok)
        result = await executor.sync_day(TEST_USER_ID, TEST_DATE)

        assert result.skipped == ["weight"]
        assert result.steps == 8000
        assert result.calories_out == 2200
        row = store.daily_logs[(TEST_USER_ID, TEST_DATE)]
        assert row.steps == 8000
        assert row.calorie_burn == 2200
        assert row.weight == pytest.approx(81.1)
        assert store.sync_logs[-1].status == SyncStatus.SUCCESS
        assert "skipped: weight" in store.sync_logs[-1].message

    @pytest.mark.asyncio
    async def test_weight_non_json_body_is_skipped_not_fatal(
        self,
        executor: DailySyncExecutor,
        store: InMemorySyncStore,
        mock_http_client: MagicMock,
        fitbit_ok: dict,
        connected: None,
    ) -> None:
        fitbit_ok["/body/log/weight/"] = httpx.Response(
            200,
            text="<html>gateway</html>",
            request=httpx.Request("GET", "https://api.fitbit.com"),
        )
        mock_http_client.get.side_effect = route(fitbit_ok)

        result = await executor.sync_day(TEST_USER_ID, TEST_DATE)

        assert result.skipped == ["weight"]
        assert result.weight is None
        assert store.daily_logs[(TEST_USER_ID, TEST_DATE)].steps == 8000
        assert store.sync_logs[-1].status == SyncStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_optional_transport_failures_are_tolerated(
        self,
        executor: DailySyncExecutor,
        store: InMemorySyncStore,
        mock_http_client: MagicMock,
        fitbit_activity_raw: dict,
        connected: None,
    ) -> None:
        mock_http_client.get.side_effect = route(
            {
                "/activities/": make_response(200, fitbit_activity_raw),
                "/body/log/fat/": make_response(500, {}),
                "/body/log/weight/": make_response(200, {"weight": []}),
                "/sleep/": make_response(503, {}),
            }
        )

        result = await executor.sync_day(TEST_USER_ID, TEST_DATE)

        assert result.skipped == ["body_fat", "sleep"]
        assert result.weight is None
        assert store.sleep_logs == {}
        assert store.sync_logs[-1].status == SyncStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_activity_failure_fails_day_and_logs_error(
        self,
        executor: DailySyncExecutor,
        store: InMemorySyncStore,
        mock_http_client: MagicMock,
        fitbit_ok: dict,
        connected: None,
    ) -> None:
        fitbit_ok["/activities/"] = make_response(500, {})
        mock_http_client.get.side_effect = route(fitbit_ok)

        with pytest.raises(ProviderApiError):
            await executor.sync_day(TEST_USER_ID, TEST_DATE)

        assert store.daily_logs == {}
        [log] = store.sync_logs
        assert log.status == SyncStatus.ERROR
        assert "500" in log.message

    @pytest.mark.asyncio
    async def test_not_connected_raises_and_logs(
        self, executor: DailySyncExecutor, store: InMemorySyncStore, mock_http_client: MagicMock
    ) -> None:
        with pytest.raises(NotConnectedError):
            await executor.sync_day(TEST_USER_ID, TEST_DATE)

        mock_http_client.get.assert_not_awaited()
        assert [e.status for e in store.sync_logs] == [SyncStatus.ERROR]

    @pytest.mark.asyncio
    async def test_token_refresh_failure_propagates(
        self,
        executor: DailySyncExecutor,
        refresher: MagicMock,
        store: InMemorySyncStore,
        connected: None,
    ) -> None:
        refresher.ensure_valid_access_token.side_effect = TokenRefreshError("no", status=401)

        with pytest.raises(TokenRefreshError):
            await executor.sync_day(TEST_USER_ID, TEST_DATE)
        assert store.sync_logs[-1].status == SyncStatus.ERROR

    @pytest.mark.asyncio
    async def test_repeated_sync_overwrites_single_row(
        self,
        executor: DailySyncExecutor,
        store: InMemorySyncStore,
        mock_http_client: MagicMock,
        fitbit_ok: dict,
        fitbit_activity_raw: dict,
        connected: None,
    ) -> None:
        mock_http_client.get.side_effect = route(fitbit_ok)
        await executor.sync_day(TEST_USER_ID, TEST_DATE)

        fitbit_activity_raw["summary"]["steps"] = 9100
        fitbit_ok["/activities/"] = make_response(200, fitbit_activity_raw)
        mock_http_client.get.side_effect = route(fitbit_ok)
        await executor.sync_day(TEST_USER_ID, TEST_DATE)

        assert len(store.daily_logs) == 1
        assert len(store.sleep_logs) == 1
        assert store.daily_logs[(TEST_USER_ID, TEST_DATE)].steps == 9100
        assert len(store.sync_logs) == 2

    @pytest.mark.asyncio
    async def test_prevalidated_token_skips_credential_lookup(
        self,
        executor: DailySyncExecutor,
        refresher: MagicMock,
        mock_http_client: MagicMock,
        fitbit_ok: dict,
    ) -> None:
        mock_http_client.get.side_effect = route(fitbit_ok)

        await executor.sync_day(TEST_USER_ID, TEST_DATE, access_token="given-token")

        refresher.ensure_valid_access_token.assert_not_awaited()
        _, kwargs = mock_http_client.get.call_args
        assert kwargs["headers"]["Authorization"] == "Bearer given-token"

    @pytest.mark.asyncio
    async def test_include_sleep_false_makes_three_requests(
        self,
        executor: DailySyncExecutor,
        mock_http_client: MagicMock,
        fitbit_ok: dict,
        connected: None,
    ) -> None:
        mock_http_client.get.side_effect = route(fitbit_ok)

        result = await executor.sync_day(TEST_USER_ID, TEST_DATE, include_sleep=False)

        assert mock_http_client.get.await_count == 3
        assert result.sleep_minutes is None


class TestSyncSleep:
    @pytest.mark.asyncio
    async def test_sleep_is_upserted(
        self,
        executor: DailySyncExecutor,
        store: InMemorySyncStore,
        mock_http_client: MagicMock,
        fitbit_sleep_raw: dict,
        connected: None,
    ) -> None:
        mock_http_client.get.return_value = make_response(200, fitbit_sleep_raw)

        result = await executor.sync_sleep(TEST_USER_ID, TEST_DATE)

        assert result.has_data is True
        assert result.duration_minutes == 450
        assert result.score == 91
        assert store.sleep_logs[(TEST_USER_ID, TEST_DATE)].efficiency == 91
        assert store.sync_logs[-1].status == SyncStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_no_sleep_is_a_success_without_row(
        self,
        executor: DailySyncExecutor,
        store: InMemorySyncStore,
        mock_http_client: MagicMock,
        connected: None,
    ) -> None:
        mock_http_client.get.return_value = make_response(200, {"sleep": []})

        result = await executor.sync_sleep(TEST_USER_ID, TEST_DATE)

        assert result.has_data is False
        assert store.sleep_logs == {}
        [log] = store.sync_logs
        assert log.status == SyncStatus.SUCCESS
        assert log.message == "No sleep data"

    @pytest.mark.asyncio
    async def test_sleep_api_failure_raises_and_logs(
        self,
        executor: DailySyncExecutor,
        store: InMemorySyncStore,
        mock_http_client: MagicMock,
        connected: None,
    ) -> None:
        mock_http_client.get.return_value = make_response(502, {})

        with pytest.raises(ProviderApiError):
            await executor.sync_sleep(TEST_USER_ID, TEST_DATE)
        assert store.sync_logs[-1].status == SyncStatus.ERROR
