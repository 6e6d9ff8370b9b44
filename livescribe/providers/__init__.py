"""Clients for external transcription, analysis and tokenizer providers."""

from .analysis import AnalysisKind, AnalysisRequest, AnalysisUnavailable, ChatGPTAnalysisEngine, TextAnalysisService
from .result import ProviderResult, ResultSource
from .tokenizer import Token, TokenizerService, segment_locally
from .transcription_api import TranscriptionProviderClient, parse_transcription_response

__all__ = [
    'AnalysisKind',
    'AnalysisRequest',
    'AnalysisUnavailable',
    'ChatGPTAnalysisEngine',
    'TextAnalysisService',
    'ProviderResult',
    'ResultSource',
    'Token',
    'TokenizerService',
    'segment_locally',
    'TranscriptionProviderClient',
    'parse_transcription_response',
]
