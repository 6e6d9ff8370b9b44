"""Transcript assembly: final fragments become entries, interim fragments fill a buffer.

The assembler is the single source of truth for what the user sees. Entries
are append-only in arrival order; the interim buffer holds only the latest
unresolved fragment and is cleared by any final fragment or by session stop.
"""

import logging
from typing import List, Optional

from ..models.transcription import TranscriptEntry, TranscriptFragment
from .publisher import TranscriptPublisher

logger = logging.getLogger(__name__)

DEFAULT_SPEAKER = "You"


class TranscriptAssembler:
    """Merges transcript fragments into an ordered transcript."""

    def __init__(self, default_speaker: str = DEFAULT_SPEAKER,
                 publisher: Optional[TranscriptPublisher] = None):
        """Initialize transcript assembler.

        Args:
            default_speaker: Name used for fragments that carry no speaker
            publisher: Optional publisher notified of entries and interim updates
        """
        self.default_speaker = default_speaker
        self.publisher = publisher

        self._entries: List[TranscriptEntry] = []
        self._next_id = 1
        self.interim_transcript = ""

    @property
    def entries(self) -> List[TranscriptEntry]:
        return list(self._entries)

    def on_fragment(self, fragment: TranscriptFragment) -> Optional[TranscriptEntry]:
        """Apply one fragment. Returns the new entry for final fragments with text."""
        if not fragment.is_final:
            self._set_interim(fragment.text)
            return None

        self._set_interim("")
        text = fragment.text.strip()
        if not text:
            logger.debug(f"Skipping empty final fragment from {fragment.source or 'unknown'}")
            return None

        speaker = fragment.speaker
        entry = TranscriptEntry(
            id=self._next_id,
            speaker=speaker.name if speaker else self.default_speaker,
            text=text,
            timestamp=fragment.timestamp,
            is_current_user=speaker is None or speaker.tag == 1,
            confidence=fragment.confidence,
            speaker_tag=speaker.tag if speaker else None,
        )
        self._next_id += 1
        self._entries.append(entry)
        logger.info(f"📝 [{entry.speaker}] '{entry.text}' ({entry.confidence:.1%})")

        if self.publisher:
            self.publisher.publish_entry(entry)
        return entry

    def clear_interim(self) -> None:
        self._set_interim("")

    def _set_interim(self, text: str) -> None:
        if text == self.interim_transcript:
            return
        self.interim_transcript = text
        if self.publisher:
            self.publisher.publish_interim(text)

    def full_text(self) -> str:
        return " ".join(entry.text for entry in self._entries)

    def reset(self) -> None:
        """Forget all entries. Ids restart at 1."""
        self._entries.clear()
        self._next_id = 1
        self.clear_interim()
