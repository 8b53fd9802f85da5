"""
Services layer - core business logic of the personalization core.

1. Interest Modeler (interest_modeler.py):
   - Weighted topic/category/source-type interests per user
   - Learns from interactions, decays stale interests weekly

2. Relevance Scorer (relevance_scorer.py):
   - Five-factor relevance score (0-100) with explanation
   - Ranking with optional category/source diversification
   - Per-user scoring weights

3. Interaction Learner (interaction_learner.py):
   - Compares predicted relevance with observed engagement
   - Adapts each user's scoring weights when predictions drift

4. Breaking News (breaking_news.py):
   - Six-factor urgency score with per-topic velocity tracking
   - Notification decisions with topic cooldowns

5. Focus Areas (focus_areas.py):
   - User-defined topical filters and templates
   - Suggestions from clustered interaction history
"""

from personalization.services.breaking_news import BreakingNewsDetector, DetectionConfig
from personalization.services.focus_areas import FilterConfig, FocusAreaManager
from personalization.services.interaction_learner import (
    AccuracyAnalysis,
    InteractionLearner,
    InteractionProcessingResult,
    LearningOutcome,
)
from personalization.services.interest_modeler import InterestModeler
from personalization.services.relevance_scorer import RelevanceScorer, normalize_score

__all__ = [
    # Interests
    "InterestModeler",
    # Relevance
    "RelevanceScorer",
    "normalize_score",
    # Learning
    "InteractionLearner",
    "AccuracyAnalysis",
    "LearningOutcome",
    "InteractionProcessingResult",
    # Breaking news
    "BreakingNewsDetector",
    "DetectionConfig",
    # Focus areas
    "FocusAreaManager",
    "FilterConfig",
]
