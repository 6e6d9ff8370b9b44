import asyncio
from unittest.mock import AsyncMock

import pytest
from aiohttp import test_utils, web

from livescribe.config import LiveScribeConfig
from livescribe.providers.analysis import (
    AnalysisKind,
    AnalysisRequest,
    AnalysisUnavailable,
    ChatGPTAnalysisEngine,
    TextAnalysisService,
    fact_check_prompt,
    rebuttal_prompt,
    term_explanation_prompt,
)
from livescribe.providers.result import ResultSource


def run_engine(handler, prompt="Is the sky blue?"):
    requests = []

    async def endpoint(request):
        requests.append({"auth": request.headers.get("Authorization"), "body": await request.json()})
        return await handler(request)

    async def main():
        app = web.Application()
        app.router.add_post("/v1/chat/completions", endpoint)
        async with test_utils.TestServer(app) as server:
            engine = ChatGPTAnalysisEngine(
                "sk-test",
                base_url=str(server.make_url("/v1/chat/completions")),
                timeout_seconds=2.0,
            )
            return await engine.send_prompt(prompt)

    return asyncio.run(main()), requests


@pytest.mark.unit
class TestAnalysisRequest:

    def test_fact_check_needs_five_characters(self):
        with pytest.raises(ValueError):
            AnalysisRequest(AnalysisKind.FACT_CHECK, text="  abc ").validate()
        AnalysisRequest(AnalysisKind.FACT_CHECK, text="The earth is round").validate()

    def test_rebuttal_needs_both_claims(self):
        with pytest.raises(ValueError):
            AnalysisRequest(AnalysisKind.REBUTTAL, user_claim="Taxes should fall").validate()
        AnalysisRequest(AnalysisKind.REBUTTAL, user_claim="a", opponent_claim="b").validate()

    def test_term_explanation_needs_term_and_context(self):
        with pytest.raises(ValueError):
            AnalysisRequest(AnalysisKind.TERM_EXPLANATION, term="GDP").validate()
        AnalysisRequest(AnalysisKind.TERM_EXPLANATION, term="GDP", context="GDP grew 2%").validate()


@pytest.mark.unit
class TestPrompts:

    def test_fact_check_includes_debate_context(self):
        prompt = fact_check_prompt(AnalysisRequest(
            AnalysisKind.FACT_CHECK,
            text="Unemployment doubled last year",
            debate_theme="Economic policy",
            user_claim="Growth is strong",
            opponent_claim="Jobs are disappearing",
        ))
        assert '"Unemployment doubled last year"' in prompt
        assert "[Debate theme] Economic policy" in prompt
        assert "[Your claim] Growth is strong" in prompt
        assert "[Opponent's claim] Jobs are disappearing" in prompt

    def test_fact_check_without_context(self):
        prompt = fact_check_prompt(AnalysisRequest(AnalysisKind.FACT_CHECK, text="Water boils at 100C"))
        assert not prompt.startswith("[")
        assert "Debate theme" not in prompt

    def test_rebuttal_mentions_current_statement(self):
        prompt = rebuttal_prompt(AnalysisRequest(
            AnalysisKind.REBUTTAL,
            user_claim="Remote work raises productivity",
            opponent_claim="Offices foster collaboration",
            current_statement="Studies show mixed results",
        ))
        assert '[Current statement] "Studies show mixed results"' in prompt
        assert '[Opponent\'s claim] "Offices foster collaboration"' in prompt

    def test_term_explanation(self):
        prompt = term_explanation_prompt(AnalysisRequest(
            AnalysisKind.TERM_EXPLANATION, term="quantitative easing", context="the bank resumed QE"))
        assert '"quantitative easing"' in prompt
        assert '"the bank resumed QE"' in prompt


@pytest.mark.unit
class TestTextAnalysisService:

    def test_analyze_returns_tagged_result(self):
        engine = AsyncMock()
        engine.send_prompt.return_value = "Verdict: accurate"
        service = TextAnalysisService(engine)

        result = asyncio.run(service.analyze(AnalysisRequest(AnalysisKind.FACT_CHECK, text="The earth is round")))

        assert result.value == "Verdict: accurate"
        assert result.source is ResultSource.PRIMARY
        assert not result.is_fallback
        assert "The earth is round" in engine.send_prompt.call_args.args[0]

    def test_invalid_request_never_calls_engine(self):
        engine = AsyncMock()
        service = TextAnalysisService(engine)
        with pytest.raises(ValueError):
            asyncio.run(service.analyze(AnalysisRequest(AnalysisKind.REBUTTAL)))
        engine.send_prompt.assert_not_called()

    def test_empty_answer_is_unavailable(self):
        engine = AsyncMock()
        engine.send_prompt.return_value = ""
        service = TextAnalysisService(engine)
        with pytest.raises(AnalysisUnavailable):
            asyncio.run(service.analyze(AnalysisRequest(
                AnalysisKind.TERM_EXPLANATION, term="GDP", context="GDP grew")))

    def test_from_config_requires_api_key(self, config_file):
        config = LiveScribeConfig(config_file("providers:\n  analysis:\n    api_key: ''\n"))
        with pytest.raises(ValueError):
            TextAnalysisService.from_config(config)

        config.set("providers.analysis.api_key", "sk-test")
        config.set("providers.analysis.model", "gpt-4o")
        service = TextAnalysisService.from_config(config)
        assert service.engine.api_key == "sk-test"
        assert service.engine.model == "gpt-4o"


@pytest.mark.unit
class TestChatGPTAnalysisEngine:

    def test_send_prompt(self):
        async def handler(request):
            return web.json_response({"choices": [{"message": {"content": "  Blue, mostly.  "}}]})

        answer, requests = run_engine(handler)
        assert answer == "Blue, mostly."
        assert requests[0]["auth"] == "Bearer sk-test"
        assert requests[0]["body"]["model"] == "gpt-4o-mini"
        assert requests[0]["body"]["messages"] == [{"role": "user", "content": "Is the sky blue?"}]

    def test_http_error_is_unavailable(self):
        async def handler(request):
            return web.Response(status=429, text="rate limited")

        with pytest.raises(AnalysisUnavailable) as info:
            run_engine(handler)
        assert info.value.message == "AI analysis is currently unavailable"

    def test_unexpected_shape_is_unavailable(self):
        async def handler(request):
            return web.json_response({"choices": []})

        with pytest.raises(AnalysisUnavailable):
            run_engine(handler)
