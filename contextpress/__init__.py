"""
contextpress: heuristic context compression for markdown project documents.

Modules:
    - tokens: tiktoken-based token counting and per-section distribution
    - sections: single-pass markdown section parsing
    - classifier: table-driven section importance scoring
    - normalizer: duplicate / whitespace / markdown cleanup
    - filter: preserve / compress / remove policy with a token budget
    - summarizer: extractive and abstractive summarization
    - strategies: aggressive, balanced and minimal strategy bundles
    - pipeline: staged ContextCompressor
    - metrics: measurement, benchmarking and export

Usage:
    from contextpress import ContextCompressor

    result = ContextCompressor().compress(document, {"strategy": "balanced", "max_tokens": 800})
    print(result.compressed, result.compression_ratio)
"""

from .classifier import ImportanceAnalysis, ImportanceClassifier, ScoredSection
from .errors import (
    ContextPressError,
    InvalidInput,
    MeasurementNotFound,
    StageFailure,
    StrategyNotFound,
    UnsupportedFormat,
)
from .filter import FilterDecision, FilterResult, InformationFilter
from .metrics import CompressionMetrics, Measurement, MeasurementStore
from .normalizer import ContentNormalizer
from .pipeline import (
    CompressionOptions,
    CompressionResult,
    ContextCompressor,
    DecompressionResult,
    compress,
)
from .sections import Section, parse_sections
from .strategies import STRATEGIES, CompressionStrategy, get_strategy, register_strategy
from .summarizer import SummaryResult, TextSummarizer
from .tokens import analyze_token_distribution, count_tokens

__version__ = "0.1.0"

__all__ = [
    # Core API
    'compress',
    'count_tokens',
    'analyze_token_distribution',
    'parse_sections',
    # Components
    'ContextCompressor',
    'ImportanceClassifier',
    'InformationFilter',
    'TextSummarizer',
    'ContentNormalizer',
    'CompressionMetrics',
    'MeasurementStore',
    'CompressionStrategy',
    'STRATEGIES',
    'get_strategy',
    'register_strategy',
    # Data types
    'Section',
    'ScoredSection',
    'ImportanceAnalysis',
    'FilterDecision',
    'FilterResult',
    'SummaryResult',
    'CompressionOptions',
    'CompressionResult',
    'DecompressionResult',
    'Measurement',
    # Errors
    'ContextPressError',
    'InvalidInput',
    'StrategyNotFound',
    'UnsupportedFormat',
    'MeasurementNotFound',
    'StageFailure',
]
