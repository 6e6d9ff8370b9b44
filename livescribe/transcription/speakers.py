"""Stable display names for diarized speaker tags."""

import logging
from typing import Dict, Optional, Sequence

from ..models.transcription import SpeakerRef

logger = logging.getLogger(__name__)

DEFAULT_SPEAKER_NAMES = ("Speaker A", "Speaker B", "Speaker C", "Speaker D", "Speaker E")


class SpeakerRegistry:
    """First-seen-wins mapping of speaker tag -> display name.

    Names are drawn from the pool in the order tags are first observed; once
    the pool is used up, tags get ``Speaker {tag}``. A tag's name never
    changes after it is assigned.
    """

    def __init__(self, names: Optional[Sequence[str]] = None):
        self.pool = tuple(names) if names else DEFAULT_SPEAKER_NAMES
        self._names: Dict[int, str] = {}

    def resolve(self, tag: int) -> str:
        existing = self._names.get(tag)
        if existing is not None:
            return existing

        assigned = len(self._names)
        name = self.pool[assigned] if assigned < len(self.pool) else f"Speaker {tag}"
        # setdefault keeps register-or-return-existing a single step
        name = self._names.setdefault(tag, name)
        logger.info(f"Registered speaker tag {tag} as '{name}'")
        return name

    def ref(self, tag: int) -> SpeakerRef:
        return SpeakerRef(tag=tag, name=self.resolve(tag))

    def names(self) -> Dict[int, str]:
        return dict(self._names)

    def reset(self) -> None:
        self._names.clear()

    def __len__(self) -> int:
        return len(self._names)
