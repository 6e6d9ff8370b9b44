"""LiveScribe - live speech transcription with speaker attribution."""

__version__ = "0.1.0"
