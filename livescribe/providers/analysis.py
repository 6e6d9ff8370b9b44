"""AI text analysis of transcript statements: fact checks, rebuttals, term explanations."""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import aiohttp

from .result import ProviderResult, ResultSource

logger = logging.getLogger(__name__)

MIN_FACT_CHECK_LENGTH = 5


class AnalysisKind(Enum):
    FACT_CHECK = "fact-check"
    REBUTTAL = "rebuttal"
    TERM_EXPLANATION = "term-explanation"


class AnalysisUnavailable(Exception):
    """The analysis provider could not produce a result."""

    def __init__(self, message: str = "AI analysis is currently unavailable"):
        super().__init__(message)
        self.message = message


@dataclass
class AnalysisRequest:
    """One analysis request; which fields are required depends on ``kind``."""
    kind: AnalysisKind
    text: Optional[str] = None
    user_claim: Optional[str] = None
    opponent_claim: Optional[str] = None
    term: Optional[str] = None
    context: Optional[str] = None
    debate_theme: Optional[str] = None
    current_statement: Optional[str] = None

    def validate(self) -> None:
        """Raise ValueError if the kind-specific fields are missing."""
        if self.kind is AnalysisKind.FACT_CHECK:
            if not self.text or len(self.text.strip()) < MIN_FACT_CHECK_LENGTH:
                raise ValueError(f"Fact check needs a statement of at least {MIN_FACT_CHECK_LENGTH} characters")
        elif self.kind is AnalysisKind.REBUTTAL:
            if not self.user_claim or not self.opponent_claim:
                raise ValueError("Rebuttal needs both the user's claim and the opponent's claim")
        elif self.kind is AnalysisKind.TERM_EXPLANATION:
            if not self.term or not self.context:
                raise ValueError("Term explanation needs a term and its context")


def _context_lines(request: AnalysisRequest, include_claims: bool) -> str:
    lines = []
    if request.debate_theme:
        lines.append(f"[Debate theme] {request.debate_theme}")
    if include_claims and request.user_claim:
        lines.append(f"[Your claim] {request.user_claim}")
    if include_claims and request.opponent_claim:
        lines.append(f"[Opponent's claim] {request.opponent_claim}")
    return "\n".join(lines)


def fact_check_prompt(request: AnalysisRequest) -> str:
    theme_hint = "Taking the debate theme and claims above into account, " if request.debate_theme else ""
    return f"""{_context_lines(request, include_claims=True)}

Fact-check the following statement using reliable information:

Statement: "{request.text}"

{theme_hint}answer in this format, in the language of the statement:
- Verdict: [accurate / partially accurate / inaccurate / unknown]
- Reasoning: [concrete reasons and evidence]
- Additional information: [related facts, if any]
- Impact on the debate: [how this fact affects the debate]
""".strip()


def rebuttal_prompt(request: AnalysisRequest) -> str:
    current = f'[Current statement] "{request.current_statement}"' if request.current_statement else ""
    theme_hint = "Within the debate theme above, " if request.debate_theme else ""
    return f"""{_context_lines(request, include_claims=False)}

[Your claim] "{request.user_claim}"
[Opponent's claim] "{request.opponent_claim}"
{current}

{theme_hint}suggest effective rebuttals to the opponent's claim.

Propose three logical, constructive rebuttals. Each must include:
1. The point of the rebuttal
2. The supporting reasoning
3. A concrete example (if possible)
4. Strength: [strong / medium / weak]
""".strip()


def term_explanation_prompt(request: AnalysisRequest) -> str:
    return f"""Explain the following term clearly, in the sense it has in the given context:

Term: "{request.term}"
Context: "{request.context}"

Include:
- The basic definition
- Its meaning in this context
- Related key points
- A concrete example (if any)
""".strip()


PROMPT_BUILDERS = {
    AnalysisKind.FACT_CHECK: fact_check_prompt,
    AnalysisKind.REBUTTAL: rebuttal_prompt,
    AnalysisKind.TERM_EXPLANATION: term_explanation_prompt,
}


class ChatGPTAnalysisEngine:
    """Sends prompts to the OpenAI chat completions API."""

    def __init__(self, api_key: str, model: str = "gpt-4o-mini",
                 base_url: str = "https://api.openai.com/v1/chat/completions",
                 timeout_seconds: float = 60.0):
        """Initialize ChatGPT analysis engine.

        Args:
            api_key: OpenAI API key
            model: Chat model used for analysis
        """
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.timeout_seconds = timeout_seconds

        logger.info(f"ChatGPTAnalysisEngine initialized with model: {model}")

    async def send_prompt(self, prompt: str, temperature: float = 0.3, max_tokens: int = 2000) -> str:
        """Send a prompt to ChatGPT and get the response.

        Raises:
            AnalysisUnavailable: If the API call fails or returns no content
        """
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json"
        }
        data = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": temperature,
            "max_tokens": max_tokens
        }

        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(self.base_url, headers=headers, json=data) as response:
                    if response.status != 200:
                        error_text = await response.text()
                        logger.error(f"ChatGPT API error: {response.status} - {error_text[:200]}")
                        raise AnalysisUnavailable()
                    result = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.error(f"ChatGPT request failed: {e}")
            raise AnalysisUnavailable() from e

        try:
            return result["choices"][0]["message"]["content"].strip()
        except (KeyError, IndexError, TypeError, AttributeError) as e:
            logger.error(f"Unexpected ChatGPT response shape: {e}")
            raise AnalysisUnavailable() from e


class TextAnalysisService:
    """Validates analysis requests and runs them through an engine."""

    def __init__(self, engine: ChatGPTAnalysisEngine):
        self.engine = engine

    @classmethod
    def from_config(cls, config) -> "TextAnalysisService":
        api_key = config.get("providers.analysis.api_key")
        if not api_key:
            raise ValueError("providers.analysis.api_key is not configured")
        return cls(ChatGPTAnalysisEngine(api_key, model=config.get("providers.analysis.model", "gpt-4o-mini")))

    async def analyze(self, request: AnalysisRequest) -> ProviderResult[str]:
        request.validate()
        prompt = PROMPT_BUILDERS[request.kind](request)
        logger.info(f"Running {request.kind.value} analysis")
        text = await self.engine.send_prompt(prompt)
        if not text:
            raise AnalysisUnavailable("AI analysis returned an empty result")
        return ProviderResult(value=text, source=ResultSource.PRIMARY)
