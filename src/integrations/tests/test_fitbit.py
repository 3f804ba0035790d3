"""Tests for the Fitbit adapter: OAuth2 calls, API error translation, normalization."""

from __future__ import annotations

from datetime import datetime, timedelta
from unittest.mock import MagicMock
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from src.integrations.adapters.fitbit import FitbitAdapter
from src.integrations.errors import (
    ConfigurationError,
    HandshakeError,
    ProviderApiError,
    TokenRefreshError,
)
from src.integrations.tests.conftest import TEST_DATE, TEST_NOW, TEST_USER_ID, make_response


# ---------------------------------------------------------------------------
# Configuration and consent URL
# ---------------------------------------------------------------------------


class TestFitbitConfiguration:
    def test_missing_credentials_raise_configuration_error(self, monkeypatch) -> None:
        monkeypatch.delenv("FITBIT_CLIENT_ID", raising=False)
        monkeypatch.delenv("FITBIT_CLIENT_SECRET", raising=False)
        adapter = FitbitAdapter(client_id="", client_secret="")
        with pytest.raises(ConfigurationError) as exc_info:
            adapter.ensure_configured()
        assert exc_info.value.key == "FITBIT_CLIENT_ID"

    def test_authorization_url_embeds_client_scope_redirect_and_state(
        self, fitbit_adapter: FitbitAdapter
    ) -> None:
        url = fitbit_adapter.authorization_url("https://app.test/fitbit/callback", "s-123")
        parsed = urlparse(url)
        params = parse_qs(parsed.query)

        assert parsed.netloc == "www.fitbit.com"
        assert params["client_id"] == ["test_client_id"]
        assert params["response_type"] == ["code"]
        assert params["redirect_uri"] == ["https://app.test/fitbit/callback"]
        assert params["state"] == ["s-123"]
        assert "activity" in params["scope"][0].split(" ")
        assert "sleep" in params["scope"][0].split(" ")
        # spaces encoded as %20, not '+'
        assert "+" not in parsed.query


# ---------------------------------------------------------------------------
# Token endpoint
# ---------------------------------------------------------------------------


class TestFitbitTokens:
    @pytest.mark.asyncio
    async def test_exchange_code_posts_basic_auth_and_parses_tokens(
        self, fitbit_adapter: FitbitAdapter, mock_http_client: MagicMock
    ) -> None:
        mock_http_client.post.return_value = make_response(
            200,
            {
                "access_token": "at-1",
                "refresh_token": "rt-1",
                "expires_in": 28800,
                "scope": "activity sleep",
                "user_id": "ABC123",
            },
        )

        tokens = await fitbit_adapter.exchange_code("code-1", "https://app.test/cb", now=TEST_NOW)

        _, kwargs = mock_http_client.post.call_args
        assert kwargs["auth"] == ("test_client_id", "test_client_secret")
        assert kwargs["data"]["grant_type"] == "authorization_code"
        assert kwargs["data"]["code"] == "code-1"
        assert kwargs["data"]["redirect_uri"] == "https://app.test/cb"
        assert tokens.access_token == "at-1"
        assert tokens.refresh_token == "rt-1"
        assert tokens.expires_at == TEST_NOW + timedelta(hours=8)
        assert tokens.provider_user_id == "ABC123"

    @pytest.mark.asyncio
    async def test_exchange_code_rejected_raises_handshake_error(
        self, fitbit_adapter: FitbitAdapter, mock_http_client: MagicMock
    ) -> None:
        mock_http_client.post.return_value = make_response(400, {"errors": []})
        with pytest.raises(HandshakeError):
            await fitbit_adapter.exchange_code("bad", "https://app.test/cb")

    @pytest.mark.asyncio
    async def test_refresh_token_sends_refresh_grant(
        self, fitbit_adapter: FitbitAdapter, mock_http_client: MagicMock
    ) -> None:
        mock_http_client.post.return_value = make_response(
            200, {"access_token": "at-2", "refresh_token": "rt-2", "expires_in": 3600}
        )

        tokens = await fitbit_adapter.refresh_token("rt-1", now=TEST_NOW)

        _, kwargs = mock_http_client.post.call_args
        assert kwargs["data"] == {"grant_type": "refresh_token", "refresh_token": "rt-1"}
        assert tokens.access_token == "at-2"
        assert tokens.refresh_token == "rt-2"
        assert tokens.expires_at == TEST_NOW + timedelta(hours=1)

    @pytest.mark.asyncio
    async def test_refresh_keeps_old_refresh_token_when_not_rotated(
        self, fitbit_adapter: FitbitAdapter, mock_http_client: MagicMock
    ) -> None:
        mock_http_client.post.return_value = make_response(200, {"access_token": "at-2"})
        tokens = await fitbit_adapter.refresh_token("rt-1", now=TEST_NOW)
        assert tokens.refresh_token == "rt-1"
        assert tokens.expires_at == TEST_NOW + timedelta(seconds=28800)

    @pytest.mark.asyncio
    async def test_refresh_rejected_carries_status(
        self, fitbit_adapter: FitbitAdapter, mock_http_client: MagicMock
    ) -> None:
        mock_http_client.post.return_value = make_response(401, {"errors": []})
        with pytest.raises(TokenRefreshError) as exc_info:
            await fitbit_adapter.refresh_token("revoked")
        assert exc_info.value.status == 401
        assert exc_info.value.rejected is True

    @pytest.mark.asyncio
    async def test_refresh_transport_failure_is_not_a_rejection(
        self, fitbit_adapter: FitbitAdapter, mock_http_client: MagicMock
    ) -> None:
        mock_http_client.post.side_effect = httpx.ConnectError("boom")
        with pytest.raises(TokenRefreshError) as exc_info:
            await fitbit_adapter.refresh_token("rt-1")
        assert exc_info.value.rejected is False

    @pytest.mark.asyncio
    async def test_refresh_with_unreadable_body_is_not_a_rejection(
        self, fitbit_adapter: FitbitAdapter, mock_http_client: MagicMock
    ) -> None:
        mock_http_client.post.return_value = httpx.Response(
            200, text="<html>busy</html>", request=httpx.Request("POST", "https://api.fitbit.com")
        )
        with pytest.raises(TokenRefreshError) as exc_info:
            await fitbit_adapter.refresh_token("rt-1")
        assert exc_info.value.rejected is False


# ---------------------------------------------------------------------------
# Data endpoints
# ---------------------------------------------------------------------------


class TestFitbitDataEndpoints:
    @pytest.mark.asyncio
    async def test_activity_summary_uses_date_path_and_bearer(
        self, fitbit_adapter: FitbitAdapter, mock_http_client: MagicMock
    ) -> None:
        mock_http_client.get.return_value = make_response(200, {"summary": {"steps": 1}})

        await fitbit_adapter.get_activity_summary("at-1", TEST_DATE)

        args, kwargs = mock_http_client.get.call_args
        assert args[0] == "https://api.fitbit.com/1/user/-/activities/date/2026-02-23.json"
        assert kwargs["headers"]["Authorization"] == "Bearer at-1"

    @pytest.mark.asyncio
    async def test_sleep_uses_v1_2_api(
        self, fitbit_adapter: FitbitAdapter, mock_http_client: MagicMock
    ) -> None:
        mock_http_client.get.return_value = make_response(200, {"sleep": []})
        await fitbit_adapter.get_sleep_log("at-1", TEST_DATE)
        args, _ = mock_http_client.get.call_args
        assert "/1.2/user/-/sleep/date/2026-02-23.json" in args[0]

    @pytest.mark.asyncio
    async def test_non_200_raises_provider_api_error(
        self, fitbit_adapter: FitbitAdapter, mock_http_client: MagicMock
    ) -> None:
        mock_http_client.get.return_value = make_response(429, {"errors": []})
        with pytest.raises(ProviderApiError) as exc_info:
            await fitbit_adapter.get_weight_log("at-1", TEST_DATE)
        assert exc_info.value.status == 429
        assert "weight" in exc_info.value.endpoint

    @pytest.mark.asyncio
    async def test_transport_error_raises_provider_api_error(
        self, fitbit_adapter: FitbitAdapter, mock_http_client: MagicMock
    ) -> None:
        mock_http_client.get.side_effect = httpx.ReadTimeout("slow")
        with pytest.raises(ProviderApiError):
            await fitbit_adapter.get_body_fat_log("at-1", TEST_DATE)


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


class TestFitbitNormalization:
    def test_activity_core_fields(
        self, fitbit_adapter: FitbitAdapter, fitbit_activity_raw: dict
    ) -> None:
        record = fitbit_adapter.normalize_activity(TEST_USER_ID, TEST_DATE, fitbit_activity_raw)
        assert record.user_id == TEST_USER_ID
        assert record.log_date == TEST_DATE
        assert record.steps == 8000
        assert record.calorie_burn == 2200
        assert record.resting_heart_rate == 58

    def test_activity_zones_minutes_and_total_distance(
        self, fitbit_adapter: FitbitAdapter, fitbit_activity_raw: dict
    ) -> None:
        record = fitbit_adapter.normalize_activity(TEST_USER_ID, TEST_DATE, fitbit_activity_raw)
        assert record.heart_rate_fat_burn_minutes == 95
        assert record.heart_rate_cardio_minutes == 22
        assert record.heart_rate_peak_minutes == 4
        assert record.active_minutes_lightly == 180
        assert record.active_minutes_fairly == 25
        assert record.active_minutes_very == 40
        assert record.distance_km == pytest.approx(6.12)

    def test_activity_missing_fields_stay_none_but_zero_is_kept(
        self, fitbit_adapter: FitbitAdapter
    ) -> None:
        record = fitbit_adapter.normalize_activity(
            TEST_USER_ID, TEST_DATE, {"summary": {"steps": 0}}
        )
        assert record.steps == 0
        assert record.calorie_burn is None
        assert record.resting_heart_rate is None
        assert record.weight is None

    def test_weight_and_fat_take_last_entry(
        self, fitbit_adapter: FitbitAdapter, fitbit_weight_raw: dict, fitbit_fat_raw: dict
    ) -> None:
        assert fitbit_adapter.extract_weight(fitbit_weight_raw) == pytest.approx(81.1)
        assert fitbit_adapter.extract_body_fat(fitbit_fat_raw) == pytest.approx(18.2)
        assert fitbit_adapter.extract_weight({"weight": []}) is None
        assert fitbit_adapter.extract_body_fat({}) is None

    def test_sleep_prefers_main_sleep(
        self, fitbit_adapter: FitbitAdapter, fitbit_sleep_raw: dict
    ) -> None:
        record = fitbit_adapter.normalize_sleep(TEST_USER_ID, TEST_DATE, fitbit_sleep_raw)
        assert record is not None
        assert record.duration_minutes == 450
        assert record.efficiency == 91
        assert record.score == 91
        assert record.deep_minutes == 82
        assert record.rem_minutes == 101
        assert record.light_minutes == 221
        assert record.wake_minutes == 46
        assert record.start_time == datetime(2026, 2, 22, 23, 10)
        assert record.raw["isMainSleep"] is True

    def test_sleep_classic_levels_use_awake(self, fitbit_adapter: FitbitAdapter) -> None:
        raw = {
            "sleep": [
                {
                    "duration": 3_600_000,
                    "efficiency": 70,
                    "levels": {"summary": {"awake": {"minutes": 9}, "restless": {"minutes": 3}}},
                }
            ]
        }
        record = fitbit_adapter.normalize_sleep(TEST_USER_ID, TEST_DATE, raw)
        assert record.duration_minutes == 60
        assert record.wake_minutes == 9
        assert record.deep_minutes is None

    def test_no_sleep_returns_none(self, fitbit_adapter: FitbitAdapter) -> None:
        assert fitbit_adapter.normalize_sleep(TEST_USER_ID, TEST_DATE, {"sleep": []}) is None
