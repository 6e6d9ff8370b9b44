"""Word segmentation of transcript text, with a local character-class fallback."""

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import List, Optional

import aiohttp
from pydantic import ValidationError

from ..models.provider import TokenizerResponse
from .result import ProviderResult, ResultSource

logger = logging.getLogger(__name__)

CONTENT_CLASSES = frozenset({"kanji", "katakana", "alpha", "numeric"})

_PUNCTUATION = re.compile(r"[、。！？「」『』（）・…,.!?;:()\[\]\"']")
_CHAR_CLASSES = (
    ("hiragana", re.compile(r"[\u3040-\u309F]")),
    ("katakana", re.compile(r"[\u30A0-\u30FF]")),
    ("kanji", re.compile(r"[\u4E00-\u9FAF]")),
    ("alpha", re.compile(r"[A-Za-z]")),
    ("numeric", re.compile(r"[0-9]")),
)


@dataclass
class Token:
    surface: str
    reading: str
    pos: str
    base_form: str
    is_content: bool


def _char_class(char: str) -> str:
    if char.isspace():
        return "space"
    if _PUNCTUATION.match(char):
        return "punctuation"
    for name, pattern in _CHAR_CLASSES:
        if pattern.match(char):
            return name
    return "other"


def _make_token(surface: str, char_class: str) -> Token:
    return Token(
        surface=surface,
        reading=surface,
        pos=char_class,
        base_form=surface,
        is_content=char_class in CONTENT_CLASSES,
    )


def segment_locally(text: str) -> List[Token]:
    """Group runs of same-class characters; whitespace separates, punctuation stands alone."""
    tokens: List[Token] = []
    current = ""
    current_class = ""
    for char in text:
        char_class = _char_class(char)
        if char_class == current_class and char_class not in ("punctuation", "space"):
            current += char
            continue
        if current and current_class != "space":
            tokens.append(_make_token(current, current_class))
        current, current_class = char, char_class
    if current and current_class != "space":
        tokens.append(_make_token(current, current_class))
    return tokens


class TokenizerService:
    """Morphological analysis through a remote service.

    Any failure, or a missing URL, degrades to ``segment_locally`` and the
    result is tagged FALLBACK.
    """

    def __init__(self, url: Optional[str] = None, timeout_seconds: float = 10.0):
        self.url = url
        self.timeout_seconds = timeout_seconds
        self._session: Optional[aiohttp.ClientSession] = None

    @classmethod
    def from_config(cls, config) -> "TokenizerService":
        return cls(url=config.get("providers.tokenizer.url"))

    async def open(self) -> None:
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
            self._session = aiohttp.ClientSession(timeout=timeout)

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> "TokenizerService":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def tokenize(self, text: str) -> ProviderResult[List[Token]]:
        if not text:
            return ProviderResult(value=[], source=ResultSource.PRIMARY)
        if not self.url:
            return ProviderResult(value=segment_locally(text), source=ResultSource.FALLBACK)

        try:
            tokens = await self._fetch(text)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.warning(f"Tokenizer unavailable, using local segmentation: {e}")
            return ProviderResult(value=segment_locally(text), source=ResultSource.FALLBACK)
        return ProviderResult(value=tokens, source=ResultSource.PRIMARY)

    async def _fetch(self, text: str) -> List[Token]:
        await self.open()
        async with self._session.post(self.url, json={"text": text}) as response:
            if response.status != 200:
                raise ValueError(f"tokenizer returned {response.status}")
            body = await response.text()

        try:
            parsed = TokenizerResponse.model_validate_json(body)
        except ValidationError as e:
            raise ValueError(f"malformed tokenizer response: {e.error_count()} error(s)") from e
        return [
            Token(
                surface=word.surface,
                reading=word.reading or word.surface,
                pos=word.pos,
                base_form=word.base_form or word.surface,
                is_content=word.is_content,
            )
            for word in parsed.words
        ]
