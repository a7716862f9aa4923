"""Spam classification: verdict cache, registries and the classifier."""

from .cache import CacheEntry, CacheStats, PredictionCache
from .classifier import (
    LEGITIMATE_MESSAGE,
    SPAM_MESSAGE,
    ClassificationResult,
    SpamClassifier,
    compute_fingerprint,
    parse_verdict,
)
from .registry import ModelRegistry, PromptRegistry, PromptVersion

__all__ = [
    "CacheEntry",
    "CacheStats",
    "ClassificationResult",
    "LEGITIMATE_MESSAGE",
    "ModelRegistry",
    "PredictionCache",
    "PromptRegistry",
    "PromptVersion",
    "SPAM_MESSAGE",
    "SpamClassifier",
    "compute_fingerprint",
    "parse_verdict",
]
