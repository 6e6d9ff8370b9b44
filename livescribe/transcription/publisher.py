"""Transcript publisher module for pub/sub event publishing."""

import logging

from pubsub import pub

from ..errors import BackendError
from ..models.transcription import TranscriptEntry

logger = logging.getLogger(__name__)

ENTRY_TOPIC = "transcript.entry"
INTERIM_TOPIC = "transcript.interim"
ERROR_TOPIC = "transcription.error"


class TranscriptPublisher:
    """Publishes transcript updates using pubsub.pub for pub/sub architecture."""

    def __init__(self, entry_topic: str = ENTRY_TOPIC, interim_topic: str = INTERIM_TOPIC,
                 error_topic: str = ERROR_TOPIC):
        """Initialize transcript publisher.

        Args:
            entry_topic: Topic for finalized transcript entries
            interim_topic: Topic for interim buffer updates
            error_topic: Topic for backend errors
        """
        self.entry_topic = entry_topic
        self.interim_topic = interim_topic
        self.error_topic = error_topic
        logger.info(f"TranscriptPublisher initialized with topics: {entry_topic}, {interim_topic}")

    def publish_entry(self, entry: TranscriptEntry) -> None:
        pub.sendMessage(self.entry_topic, entry=entry)
        logger.debug(f"Published transcript entry #{entry.id} ({entry.speaker})")

    def publish_interim(self, text: str) -> None:
        pub.sendMessage(self.interim_topic, text=text)

    def publish_error(self, error: BackendError) -> None:
        pub.sendMessage(self.error_topic, error=error)
