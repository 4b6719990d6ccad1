"""Tests for the AI provider and report narration."""

from unittest.mock import AsyncMock, patch

import pytest

from scripts import report_narrator
from scripts.analytics.config import EngineConfig
from scripts.analytics.engine import DealAnalyticsEngine
from scripts.lib import ai_provider, supabase_client
from scripts.lib.errors import ConfigError


@pytest.fixture
def weekly_report(now):
    return DealAnalyticsEngine(EngineConfig(), clock=lambda: now).weekly_forecast([])


class TestProviderSelection:
    def test_default_and_unknown_provider(self):
        with patch.dict("os.environ", {"AI_PROVIDER": "CLAUDE"}, clear=False):
            assert ai_provider.default_provider() == "claude"
        with patch.dict("os.environ", {"AI_PROVIDER": "other"}, clear=False):
            assert ai_provider.default_provider() == "groq"

    def test_is_configured_checks_matching_key(self):
        with patch.dict("os.environ", {"GROQ_API_KEY": "g", "ANTHROPIC_API_KEY": ""}, clear=False):
            assert ai_provider.is_configured("groq") is True
            assert ai_provider.is_configured("claude") is False

    @pytest.mark.asyncio
    async def test_missing_key_is_config_error(self):
        with patch.dict("os.environ", {"GROQ_API_KEY": ""}, clear=False):
            with pytest.raises(ConfigError):
                await ai_provider.ai_complete("t", "sys", "user", provider="groq")


class TestAiComplete:
    @pytest.mark.asyncio
    async def test_response_and_call_log(self):
        backend = AsyncMock(return_value=("Pipeline is healthy.", 120, 30))
        with patch.object(ai_provider, "_complete_groq", new=backend), \
                patch.object(ai_provider, "_record_call") as record:
            response = await ai_provider.ai_complete("narrate_weekly", "sys", "user", provider="groq")

        assert response.content == "Pipeline is healthy."
        assert response.provider == "groq"
        assert response.model == ai_provider.MODELS["groq"]
        assert (response.input_tokens, response.output_tokens) == (120, 30)
        assert record.call_args.args[:4] == ("narrate_weekly", "groq", ai_provider.MODELS["groq"], 150)

    def test_call_log_skipped_without_supabase(self):
        with patch.object(supabase_client, "is_configured", return_value=False), \
                patch.object(supabase_client, "get_client") as get_client:
            ai_provider.log_ai_error("narrate_weekly", "groq", "", RuntimeError("x"))
        get_client.assert_not_called()


class TestNarrateReport:
    def test_prompt_leads_with_report_focus(self):
        prompt = report_narrator.build_prompt("aging", "STAGE AGING")
        assert prompt.startswith(report_narrator.REPORT_FOCUS["aging"])
        assert prompt.endswith("STAGE AGING")

    @pytest.mark.asyncio
    async def test_unconfigured_provider_returns_none(self, weekly_report):
        with patch.object(report_narrator, "is_configured", return_value=False):
            assert await report_narrator.narrate_report("weekly", weekly_report) is None

    @pytest.mark.asyncio
    async def test_returns_stripped_content(self, weekly_report):
        response = ai_provider.AIResponse("  Two deals stalled.  ", "groq", "m", 1, 1, 5)
        with patch.object(report_narrator, "is_configured", return_value=True), \
                patch.object(report_narrator, "ai_complete", new=AsyncMock(return_value=response)) as call:
            assert await report_narrator.narrate_report("weekly", weekly_report) == "Two deals stalled."
        assert call.call_args.kwargs["task"] == "narrate_weekly"

    @pytest.mark.asyncio
    async def test_provider_failure_is_not_fatal(self, weekly_report):
        with patch.object(report_narrator, "is_configured", return_value=True), \
                patch.object(report_narrator, "ai_complete", new=AsyncMock(side_effect=RuntimeError("down"))), \
                patch.object(report_narrator, "log_ai_error") as log_error:
            assert await report_narrator.narrate_report("weekly", weekly_report) is None
        log_error.assert_called_once()
