"""Document classification providers for ledgerdesk.

Provides a uniform two-tier interface across LLM providers:
- OpenAIClassifier: OpenAI GPT-4o (default)
- MistralClassifier: Mistral AI

Usage:
    from models import create_classifier

    classifier = create_classifier("openai")
    triage = await classifier.classify_tier1(data, "application/pdf")
    if triage.needs_deep_analysis:
        fields = await classifier.classify_tier2(data, "application/pdf")
"""

from .base import (
    Classifier, ClassifierError, Tier1Result, Tier2Result,
    ALLOWED_FOLDERS, TIER1_CATEGORIES, MAX_FILE_SIZE_MB,
)


def create_classifier(provider: str = "openai") -> Classifier:
    """Create a classifier for the specified provider.

    Args:
        provider: Provider name ("openai" or "mistral")

    Returns:
        Classifier instance for the specified provider

    Raises:
        ValueError: If provider is not recognized
        KeyError: If the provider's API key is missing (mistral)
    """
    provider = provider.lower()

    if provider == "openai":
        from .openai import OpenAIClassifier
        return OpenAIClassifier()
    elif provider == "mistral":
        from .mistral import MistralClassifier
        return MistralClassifier()
    else:
        raise ValueError(
            f"Unknown LLM provider: {provider}. "
            "Must be 'openai' or 'mistral'"
        )


__all__ = [
    'Classifier',
    'ClassifierError',
    'Tier1Result',
    'Tier2Result',
    'ALLOWED_FOLDERS',
    'TIER1_CATEGORIES',
    'MAX_FILE_SIZE_MB',
    'create_classifier',
]
