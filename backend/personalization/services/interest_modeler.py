"""
Interest modeling - learns what each user cares about.

Every profile holds three weighted interest collections (topics, categories,
source types). Interactions nudge weights up or down:

    weight += learning_rate * strength(interaction) * (+1 | -1)

clamped to [0, 1]. Interests the user has not touched for more than a week
decay by decay_rate per elapsed week, floored at 0.1.

Explicitly declared preferences are seeded at 0.8 so they dominate until
behaviour says otherwise.
"""
from datetime import datetime
from typing import Optional

import structlog

from personalization.config import Settings, get_settings
from personalization.core.clock import utcnow
from personalization.core.errors import DataValidationError, NotFoundError, persistence_context
from personalization.models.domain import (
    ContentItem,
    ExplicitPreferences,
    Interaction,
    InteractionType,
    InterestKind,
    InterestProfile,
    InterestSummary,
    InterestSummaryEntry,
    Polarity,
    ProfileStats,
)
from personalization.repositories.base import ProfileRepository

logger = structlog.get_logger()


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


class InterestModeler:
    """
    Owns interest profiles and keeps them in step with user behaviour.

    Profiles are created lazily: reading a profile or recording an
    interaction for an unknown user creates an empty one.
    """

    # Bounds of the tunable learning parameters
    LEARNING_RATE_BOUNDS = (0.01, 0.5)
    DECAY_RATE_BOUNDS = (0.8, 0.99)

    SUMMARY_LIMITS = {
        InterestKind.TOPICS: 10,
        InterestKind.CATEGORIES: 5,
        InterestKind.SOURCE_TYPES: 3,
    }

    def __init__(self, repository: ProfileRepository, settings: Optional[Settings] = None):
        self.repository = repository
        self.settings = settings or get_settings()

    async def _load(self, user_id: str) -> Optional[InterestProfile]:
        async with persistence_context("load interest profile"):
            return await self.repository.get(user_id)

    async def _save(self, profile: InterestProfile, now: Optional[datetime] = None) -> InterestProfile:
        profile.updated_at = now or utcnow()
        async with persistence_context("save interest profile"):
            await self.repository.save(profile)
        return profile

    async def initialize_profile(
        self,
        user_id: str,
        explicit_preferences: Optional[ExplicitPreferences] = None,
    ) -> InterestProfile:
        """
        Create a profile for a user, or return the existing one.

        Args:
            user_id: User identifier
            explicit_preferences: Declared interests, seeded at weight 0.8

        Returns:
            The user's profile
        """
        if not user_id:
            raise DataValidationError("user_id is required")

        existing = await self._load(user_id)
        if existing is not None:
            return existing

        now = utcnow()
        profile = InterestProfile(user_id=user_id, created_at=now, updated_at=now)
        if explicit_preferences is not None:
            profile.explicit_preferences = explicit_preferences.model_copy(deep=True)
            self._seed_explicit(profile, now)

        await self._save(profile, now)
        logger.info(
            "Initialized interest profile",
            user_id=user_id,
            explicit_topics=len(profile.topics),
        )
        return profile

    async def get_profile(self, user_id: str) -> InterestProfile:
        """Get a user's profile, creating an empty one if needed."""
        profile = await self._load(user_id)
        if profile is None:
            profile = await self.initialize_profile(user_id)
        return profile

    async def find_profile(self, user_id: str) -> Optional[InterestProfile]:
        """Get a user's profile without creating one."""
        return await self._load(user_id)

    async def update_from_interaction(
        self,
        user_id: str,
        interaction: Interaction,
        content: ContentItem,
        now: Optional[datetime] = None,
    ) -> InterestProfile:
        """
        Learn from a single interaction.

        Every topic and category of the content, plus its source type, is
        nudged in the direction of the interaction's polarity. Decay is
        applied afterwards, then the profile is persisted.

        Args:
            user_id: User who interacted
            interaction: The interaction event
            content: The content that was interacted with
            now: Reference time (defaults to current UTC time)

        Returns:
            The updated profile
        """
        if interaction is None or content is None:
            raise DataValidationError("interaction and content are required")

        now = now or utcnow()
        profile = await self.get_profile(user_id)
        polarity = interaction.type.polarity
        strength = interaction.type.strength

        for topic in content.topics:
            profile.update_interest(InterestKind.TOPICS, topic, polarity, strength, now)
        for category in content.categories:
            profile.update_interest(InterestKind.CATEGORIES, category, polarity, strength, now)
        if content.source_type:
            profile.update_interest(
                InterestKind.SOURCE_TYPES, content.source_type, polarity, strength, now
            )

        profile.apply_decay(now)
        await self._save(profile, now)

        logger.debug(
            "Updated interests from interaction",
            user_id=user_id,
            content_id=content.id,
            interaction_type=interaction.type.value,
            polarity=polarity.value,
        )
        return profile

    async def update_explicit_preferences(
        self,
        user_id: str,
        preferences: dict[str, list[str]],
    ) -> InterestProfile:
        """
        Replace the given explicit preference lists and seed their interests.

        Args:
            user_id: User identifier
            preferences: Any of "topics", "categories", "source_types" mapped
                to the new list; omitted keys keep their current value

        Returns:
            The updated profile
        """
        unknown = set(preferences) - {kind.value for kind in InterestKind}
        if unknown:
            raise DataValidationError(f"Unknown preference keys: {sorted(unknown)}")
        for key, names in preferences.items():
            if not isinstance(names, list):
                raise DataValidationError(f"{key} must be a list")

        now = utcnow()
        profile = await self.get_profile(user_id)
        for key, names in preferences.items():
            setattr(profile.explicit_preferences, key, list(names))
        self._seed_explicit(profile, now)

        await self._save(profile, now)
        logger.info("Updated explicit preferences", user_id=user_id, keys=sorted(preferences))
        return profile

    async def get_interest_summary(self, user_id: str) -> InterestSummary:
        """Top interests per collection plus profile statistics."""
        profile = await self.get_profile(user_id)

        def top(kind: InterestKind) -> list[InterestSummaryEntry]:
            return [
                InterestSummaryEntry(
                    name=e.name, weight=e.weight, interaction_count=e.interaction_count
                )
                for e in profile.top_interests(kind, self.SUMMARY_LIMITS[kind])
            ]

        return InterestSummary(
            top_topics=top(InterestKind.TOPICS),
            top_categories=top(InterestKind.CATEGORIES),
            top_source_types=top(InterestKind.SOURCE_TYPES),
            explicit_preferences=profile.explicit_preferences.model_copy(deep=True),
            profile_stats=ProfileStats(
                total_topics=len(profile.topics),
                total_categories=len(profile.categories),
                total_source_types=len(profile.source_types),
                learning_rate=profile.learning_rate,
                decay_rate=profile.decay_rate,
                last_updated=profile.updated_at,
            ),
        )

    async def adjust_learning_parameters(
        self,
        user_id: str,
        learning_rate: Optional[float] = None,
        decay_rate: Optional[float] = None,
        explicit_weight: Optional[float] = None,
        implicit_weight: Optional[float] = None,
    ) -> InterestProfile:
        """
        Tune a user's learning parameters. Values are clamped to their bounds.

        Raises:
            NotFoundError: If the user has no profile
        """
        profile = await self._load(user_id)
        if profile is None:
            raise NotFoundError("Interest profile", user_id)

        if learning_rate is not None:
            profile.learning_rate = _clamp(learning_rate, *self.LEARNING_RATE_BOUNDS)
        if decay_rate is not None:
            profile.decay_rate = _clamp(decay_rate, *self.DECAY_RATE_BOUNDS)
        if explicit_weight is not None:
            profile.adaptive_weights.explicit_weight = _clamp(explicit_weight, 0.0, 1.0)
        if implicit_weight is not None:
            profile.adaptive_weights.implicit_weight = _clamp(implicit_weight, 0.0, 1.0)

        await self._save(profile)
        logger.info(
            "Adjusted learning parameters",
            user_id=user_id,
            learning_rate=profile.learning_rate,
            decay_rate=profile.decay_rate,
        )
        return profile

    async def reset_profile(self, user_id: str) -> InterestProfile:
        """
        Forget everything learned, keeping only explicit preferences.

        Raises:
            NotFoundError: If the user has no profile
        """
        profile = await self._load(user_id)
        if profile is None:
            raise NotFoundError("Interest profile", user_id)

        now = utcnow()
        profile.topics = []
        profile.categories = []
        profile.source_types = []
        self._seed_explicit(profile, now)

        await self._save(profile, now)
        logger.info("Reset interest profile", user_id=user_id)
        return profile

    def get_interaction_type(self, interaction_type: InteractionType | str) -> Polarity:
        """Classify an interaction type (or raw string) as positive or negative."""
        return InteractionType(interaction_type).polarity

    async def apply_decay_to_all(self, now: Optional[datetime] = None) -> int:
        """
        Decay every stored profile.

        Returns:
            Number of profiles whose weights changed
        """
        now = now or utcnow()
        async with persistence_context("list interest profiles"):
            user_ids = await self.repository.list_user_ids()

        changed = 0
        for user_id in user_ids:
            profile = await self._load(user_id)
            if profile is not None and profile.apply_decay(now):
                await self._save(profile, now)
                changed += 1

        logger.info("Applied interest decay", profiles=len(user_ids), changed=changed)
        return changed

    @staticmethod
    def _seed_explicit(profile: InterestProfile, now: datetime) -> None:
        for kind in InterestKind:
            for name in profile.explicit_preferences.names(kind):
                profile.seed_explicit(kind, name, now)
