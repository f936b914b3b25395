from parley.generation.classifiers import (
    SENTIMENT_FALLBACK,
    TOPIC_FALLBACK,
    AdvisoryClassifier,
    SentimentAnalysis,
    TopicClassification,
)
from parley.generation.knowledge import ResponseTemplate, TemplateMatcher, TemplateStore
from parley.generation.orchestrator import (
    GenerationOrchestrator,
    GenerationRequest,
    PreparedPrompt,
    avoid_topics,
    build_prompt,
)

__all__ = [
    "AdvisoryClassifier",
    "GenerationOrchestrator",
    "GenerationRequest",
    "PreparedPrompt",
    "ResponseTemplate",
    "SENTIMENT_FALLBACK",
    "SentimentAnalysis",
    "TOPIC_FALLBACK",
    "TemplateMatcher",
    "TemplateStore",
    "TopicClassification",
    "avoid_topics",
    "build_prompt",
]
