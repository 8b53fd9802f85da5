"""
Focus areas - user-defined topical filters over the content stream.

A focus area lists topics, categories, keywords and source types. Content
is matched against each of the user's active focus areas:

    AreaScore = 0.4 * TopicMatch + 0.3 * CategoryMatch
              + 0.2 * KeywordMatch + 0.1 * SourceTypeMatch

and an item's total is the priority-weighted mean (high 1.0, medium 0.8,
low 0.6) over the areas it matched at all. Items below minimum_pass_score
are filtered out.

Suggestions cluster the topics a user engages with most, using a
word-overlap similarity graph whose connected components become candidate
focus areas.
"""
import uuid
from collections import Counter, defaultdict
from datetime import datetime, timedelta
from typing import Any, Optional

import networkx as nx
import numpy as np
import structlog
from pydantic import BaseModel, Field, ValidationError

from personalization.config import Settings, get_settings
from personalization.core.clock import utcnow
from personalization.core.errors import (
    DataValidationError,
    FocusAreaLimitError,
    NotFoundError,
    persistence_context,
)
from personalization.core.templates import FocusAreaTemplate, get_template, iter_templates
from personalization.models.domain import (
    ContentItem,
    FilteredContent,
    FocusArea,
    FocusAreaMatch,
    FocusAreaPriority,
    FocusAreaSuggestion,
    InteractionHistoryEntry,
)
from personalization.repositories.base import FocusAreaRepository

logger = structlog.get_logger()

LIST_FIELDS = ("topics", "categories", "keywords", "source_types")
UPDATABLE_FIELDS = frozenset({"name", "description", "priority", "is_active", *LIST_FIELDS})

STRING_SIMILARITY_THRESHOLD = 0.8
CLUSTER_SIMILARITY_THRESHOLD = 0.3
MAX_SUGGESTIONS = 5
SUGGESTION_TOP_TOPICS = 10
SUGGESTION_TOP_CATEGORIES = 5


class FocusMatchWeights(BaseModel):
    topic_match: float = Field(default=0.4, ge=0.0, le=1.0)
    category_match: float = Field(default=0.3, ge=0.0, le=1.0)
    keyword_match: float = Field(default=0.2, ge=0.0, le=1.0)
    source_type_match: float = Field(default=0.1, ge=0.0, le=1.0)


class FilterConfig(BaseModel):
    """Matching weights and limits of the focus area filter."""
    weights: FocusMatchWeights = Field(default_factory=FocusMatchWeights)
    minimum_pass_score: float = Field(default=0.3, ge=0.0, le=1.0)
    max_focus_areas: int = Field(default=10, ge=1)


# =============================================================================
# String matching helpers
# =============================================================================

def word_jaccard(a: str, b: str) -> float:
    """Jaccard similarity of the whitespace-separated words of two strings."""
    words_a = set(a.lower().split())
    words_b = set(b.lower().split())
    union = words_a | words_b
    return len(words_a & words_b) / len(union) if union else 0.0


def is_string_match(a: str, b: str) -> bool:
    """Exact or containment match (case-insensitive), else word similarity above 0.8."""
    s1 = a.lower().strip()
    s2 = b.lower().strip()
    if not s1 or not s2:
        return False
    if s1 == s2 or s1 in s2 or s2 in s1:
        return True
    return word_jaccard(s1, s2) > STRING_SIMILARITY_THRESHOLD


def array_match(content_values: list[str], focus_values: list[str]) -> tuple[float, list[str]]:
    """
    Count content values matching any focus value, each counted once.

    Returns:
        (min(matches / max(len(content), len(focus)), 1), matched content values)
    """
    if not content_values or not focus_values:
        return 0.0, []
    matched = [v for v in content_values if any(is_string_match(v, f) for f in focus_values)]
    return min(len(matched) / max(len(content_values), len(focus_values)), 1.0), matched


def keyword_match(content: ContentItem, keywords: list[str]) -> tuple[float, list[str]]:
    if not keywords:
        return 0.0, []
    text = content.text
    matched = [k for k in keywords if k.lower() in text]
    return min(len(matched) / len(keywords), 1.0), matched


def validate_focus_area_data(data: dict[str, Any]) -> None:
    """
    Check user-supplied focus area data.

    Raises:
        DataValidationError: With a message naming the offending field
    """
    if not isinstance(data, dict):
        raise DataValidationError("Focus area data must be a mapping")
    name = data.get("name")
    if not name or not isinstance(name, str):
        raise DataValidationError("Focus area name is required and must be a string")
    if not 2 <= len(name) <= 100:
        raise DataValidationError("Focus area name must be between 2 and 100 characters")

    for field_name in LIST_FIELDS:
        value = data.get(field_name)
        if value is not None and not isinstance(value, list):
            raise DataValidationError(f"{field_name} must be a list")
        if value and not all(isinstance(v, str) for v in value):
            raise DataValidationError(f"{field_name} must contain only strings")

    priority = data.get("priority")
    if priority is not None:
        try:
            FocusAreaPriority(priority)
        except ValueError:
            raise DataValidationError("Priority must be one of: high, medium, low") from None


class FocusAreaManager:
    """
    CRUD, filtering and suggestions for user focus areas.
    """

    def __init__(self, repository: FocusAreaRepository, settings: Optional[Settings] = None):
        self.repository = repository
        self.settings = settings or get_settings()

        focus = self.settings.focus_areas
        self.filter_config = FilterConfig(
            weights=FocusMatchWeights(
                topic_match=focus.weight_topic_match,
                category_match=focus.weight_category_match,
                keyword_match=focus.weight_keyword_match,
                source_type_match=focus.weight_source_type_match,
            ),
            minimum_pass_score=focus.minimum_pass_score,
            max_focus_areas=focus.max_focus_areas,
        )

    # =========================================================================
    # CRUD
    # =========================================================================

    async def create_focus_area(self, user_id: str, data: dict[str, Any]) -> FocusArea:
        """
        Create a focus area for a user.

        Raises:
            DataValidationError: If the data is malformed
            FocusAreaLimitError: If the user already has max_focus_areas
        """
        validate_focus_area_data(data)

        existing = await self._list(user_id)
        limit = self.filter_config.max_focus_areas
        if len(existing) >= limit:
            raise FocusAreaLimitError(f"Maximum focus areas limit ({limit}) reached")

        now = utcnow()
        focus_area = FocusArea(
            id=f"fa_{uuid.uuid4().hex[:12]}",
            user_id=user_id,
            name=data["name"],
            description=data.get("description") or "",
            topics=list(data.get("topics") or []),
            categories=list(data.get("categories") or []),
            keywords=list(data.get("keywords") or []),
            source_types=list(data.get("source_types") or []),
            priority=data.get("priority") or FocusAreaPriority.MEDIUM,
            is_active=data.get("is_active", True) is not False,
            created_at=now,
            updated_at=now,
        )

        async with persistence_context("save focus area"):
            await self.repository.save(focus_area)
        logger.info("Created focus area", user_id=user_id, focus_area_id=focus_area.id, name=focus_area.name)
        return focus_area

    async def create_from_template(
        self,
        user_id: str,
        template_id: str,
        customizations: Optional[dict[str, Any]] = None,
    ) -> FocusArea:
        """
        Create a focus area from a template. List fields of the customizations
        are appended to the template's; other fields replace them.

        Raises:
            NotFoundError: If the template does not exist
        """
        template = get_template(template_id)
        if template is None:
            raise NotFoundError("Focus area template", template_id)

        customizations = customizations or {}
        data = {**template.to_data(), **customizations}
        for field_name in LIST_FIELDS:
            extra = customizations.get(field_name) or []
            if not isinstance(extra, list):
                raise DataValidationError(f"{field_name} must be a list")
            data[field_name] = list(getattr(template, field_name)) + extra

        return await self.create_focus_area(user_id, data)

    async def get_focus_areas(self, user_id: str) -> list[FocusArea]:
        return await self._list(user_id)

    async def get_focus_area(self, user_id: str, focus_area_id: str) -> FocusArea:
        async with persistence_context("load focus area"):
            focus_area = await self.repository.get(focus_area_id)
        if focus_area is None or focus_area.user_id != user_id:
            raise NotFoundError("Focus area", focus_area_id)
        return focus_area

    async def update_focus_area(
        self,
        user_id: str,
        focus_area_id: str,
        updates: dict[str, Any],
    ) -> FocusArea:
        """
        Apply updates after validating the merged result.

        Deactivating a focus area also removes it from the active filter set.
        """
        if not isinstance(updates, dict):
            raise DataValidationError("Focus area updates must be a mapping")
        unknown = set(updates) - UPDATABLE_FIELDS
        if unknown:
            raise DataValidationError(f"Cannot update fields: {sorted(unknown)}")

        focus_area = await self.get_focus_area(user_id, focus_area_id)
        merged = {**focus_area.model_dump(), **updates}
        validate_focus_area_data(merged)

        try:
            updated = FocusArea.model_validate({**merged, "updated_at": utcnow()})
        except ValidationError as e:
            raise DataValidationError(f"Invalid focus area: {e}") from e

        async with persistence_context("save focus area"):
            await self.repository.save(updated)
            if not updated.is_active:
                await self._remove_from_active(user_id, focus_area_id)

        logger.info("Updated focus area", user_id=user_id, focus_area_id=focus_area_id, fields=sorted(updates))
        return updated

    async def delete_focus_area(self, user_id: str, focus_area_id: str) -> bool:
        await self.get_focus_area(user_id, focus_area_id)
        async with persistence_context("delete focus area"):
            await self.repository.delete(focus_area_id)
            await self._remove_from_active(user_id, focus_area_id)
        logger.info("Deleted focus area", user_id=user_id, focus_area_id=focus_area_id)
        return True

    # =========================================================================
    # Active filters
    # =========================================================================

    async def set_active_filters(self, user_id: str, focus_area_ids: list[str]) -> list[FocusArea]:
        """
        Replace the user's active filter set.

        Raises:
            DataValidationError: If any id is not one of the user's active focus areas
        """
        owned = {fa.id: fa for fa in await self._list(user_id) if fa.is_active}
        invalid = [fid for fid in focus_area_ids if fid not in owned]
        if invalid:
            raise DataValidationError(f"Invalid focus area IDs: {', '.join(invalid)}")

        async with persistence_context("save active filters"):
            await self.repository.set_active_ids(user_id, list(focus_area_ids))
        return [owned[fid] for fid in focus_area_ids]

    async def get_active_filters(self, user_id: str) -> list[FocusArea]:
        """Active focus areas in the order they were activated."""
        owned = {fa.id: fa for fa in await self._list(user_id)}
        async with persistence_context("load active filters"):
            active_ids = await self.repository.get_active_ids(user_id)
        return [owned[fid] for fid in active_ids if fid in owned and owned[fid].is_active]

    # =========================================================================
    # Filtering
    # =========================================================================

    async def filter_content(
        self,
        user_id: str,
        items: list[ContentItem],
        now: Optional[datetime] = None,
    ) -> list[FilteredContent]:
        """
        Keep items matching the user's active focus areas, best match first.

        With no active filters every item passes through with score 0.
        Each matched focus area's content_count and last_matched_at are updated.
        """
        if items is None:
            raise DataValidationError("items are required")
        if any(item is None for item in items):
            raise DataValidationError("content items must not be None")

        active = await self.get_active_filters(user_id)
        if not active:
            return [FilteredContent(content=item) for item in items]

        now = now or utcnow()
        match_counts: Counter[str] = Counter()
        passed = []
        for item in items:
            matches, total = self.evaluate_content_matches(item, active)
            if total < self.filter_config.minimum_pass_score:
                continue
            matching_ids = [m.focus_area_id for m in matches]
            match_counts.update(matching_ids)
            passed.append(
                FilteredContent(
                    content=item,
                    focus_area_matches=matches,
                    focus_area_score=total,
                    matching_focus_areas=matching_ids,
                )
            )

        await self._update_focus_area_stats(active, match_counts, now)

        logger.debug("Filtered content", user_id=user_id, items=len(items), passed=len(passed))
        return sorted(passed, key=lambda c: c.focus_area_score, reverse=True)

    def evaluate_content_matches(
        self,
        content: ContentItem,
        focus_areas: list[FocusArea],
    ) -> tuple[list[FocusAreaMatch], float]:
        """
        Match one item against several focus areas.

        Returns:
            (matches with score > 0, priority-weighted mean score)
        """
        matches = []
        for focus_area in focus_areas:
            match = self.calculate_focus_area_match(content, focus_area)
            if match.score > 0:
                matches.append(match)

        if not matches:
            return [], 0.0

        weights = [m.priority.weight for m in matches]
        total = float(np.average([m.score for m in matches], weights=weights))
        return matches, total

    def calculate_focus_area_match(self, content: ContentItem, focus_area: FocusArea) -> FocusAreaMatch:
        topic_score, topics = array_match(content.topics, focus_area.topics)
        category_score, categories = array_match(content.categories, focus_area.categories)
        keyword_score, keywords = keyword_match(content, focus_area.keywords)

        source_score = 0.0
        source_types: list[str] = []
        if content.source_type and content.source_type in focus_area.source_types:
            source_score = 1.0
            source_types = [content.source_type]

        weights = self.filter_config.weights
        score = (
            topic_score * weights.topic_match
            + category_score * weights.category_match
            + keyword_score * weights.keyword_match
            + source_score * weights.source_type_match
        )
        return FocusAreaMatch(
            focus_area_id=focus_area.id,
            priority=focus_area.priority,
            score=score,
            breakdown={
                "topic_match": topic_score,
                "category_match": category_score,
                "keyword_match": keyword_score,
                "source_type_match": source_score,
            },
            matched_elements={
                "topics": topics,
                "categories": categories,
                "keywords": keywords,
                "source_types": source_types,
            },
        )

    async def _update_focus_area_stats(
        self,
        focus_areas: list[FocusArea],
        match_counts: Counter,
        now: datetime,
    ) -> None:
        for focus_area in focus_areas:
            count = match_counts.get(focus_area.id, 0)
            if not count:
                continue
            focus_area.content_count += count
            focus_area.last_matched_at = now
            async with persistence_context("save focus area stats"):
                await self.repository.save(focus_area)

    # =========================================================================
    # Analytics & suggestions
    # =========================================================================

    async def get_focus_area_analytics(self, user_id: str, now: Optional[datetime] = None) -> dict[str, Any]:
        now = now or utcnow()
        focus_areas = await self._list(user_id)
        async with persistence_context("load active filters"):
            active_ids = set(await self.repository.get_active_ids(user_id))

        day_ago = now - timedelta(days=1)
        week_ago = now - timedelta(days=7)
        distribution = {p.value: 0 for p in FocusAreaPriority}
        for fa in focus_areas:
            distribution[fa.priority.value] += 1

        return {
            "total_focus_areas": len(focus_areas),
            "active_focus_areas": len(active_ids),
            "focus_area_stats": [
                {
                    "id": fa.id,
                    "name": fa.name,
                    "priority": fa.priority.value,
                    "is_active": fa.is_active,
                    "is_filtering": fa.id in active_ids,
                    "content_count": fa.content_count,
                    "last_matched_at": fa.last_matched_at,
                    "created_at": fa.created_at,
                    "topics_count": len(fa.topics),
                    "categories_count": len(fa.categories),
                    "keywords_count": len(fa.keywords),
                }
                for fa in focus_areas
            ],
            "priority_distribution": distribution,
            "activity_summary": {
                "total_content_matched": sum(fa.content_count for fa in focus_areas),
                "active_today": sum(1 for fa in focus_areas if fa.last_matched_at and fa.last_matched_at > day_ago),
                "active_this_week": sum(
                    1 for fa in focus_areas if fa.last_matched_at and fa.last_matched_at > week_ago
                ),
                "never_matched": sum(1 for fa in focus_areas if fa.last_matched_at is None),
            },
        }

    async def suggest_focus_areas(
        self,
        user_id: str,
        interaction_history: Optional[list[InteractionHistoryEntry]] = None,
    ) -> list[FocusAreaSuggestion]:
        """
        Propose focus areas from interaction history, or the templates without one.

        Suggestions whose topics overlap a topic of an existing focus area are dropped.
        """
        if not interaction_history:
            return [self._template_suggestion(t) for t in iter_templates()]

        existing_topics = {t.lower() for fa in await self._list(user_id) for t in fa.topics}
        suggestions = [
            s for s in self.generate_suggestions(interaction_history)
            if not any(t.lower() in existing_topics for t in s.topics)
        ]
        return suggestions[:MAX_SUGGESTIONS]

    def generate_suggestions(self, history: list[InteractionHistoryEntry]) -> list[FocusAreaSuggestion]:
        topic_counts: Counter[str] = Counter()
        category_counts: Counter[str] = Counter()
        topic_engagement: dict[str, list[float]] = defaultdict(list)

        for entry in history:
            engagement = entry.type.base_engagement
            for topic in entry.content.topics:
                topic_counts[topic] += 1
                topic_engagement[topic].append(engagement)
            category_counts.update(entry.content.categories)

        top_topics = [t for t, _ in topic_counts.most_common(SUGGESTION_TOP_TOPICS)]
        top_categories = [c for c, _ in category_counts.most_common(SUGGESTION_TOP_CATEGORIES)]
        mean_engagement = {t: float(np.mean(v)) for t, v in topic_engagement.items()}

        suggestions = []
        for cluster in self.cluster_topics(top_topics):
            if len(cluster) < 2:
                continue
            avg = float(np.mean([mean_engagement.get(t, 0.0) for t in cluster]))
            suggestions.append(
                FocusAreaSuggestion(
                    name=self.generate_cluster_name(cluster),
                    description=f"Focus area based on your interest in {', '.join(cluster)}",
                    topics=cluster,
                    categories=top_categories[:3],
                    keywords=self.generate_keywords_from_topics(cluster),
                    source_types=["news", "blog"],
                    priority=FocusAreaPriority.HIGH if avg > 0.7 else FocusAreaPriority.MEDIUM,
                    reason=f"You frequently engage with content about {cluster[0]}",
                    confidence=min(avg, 0.9),
                )
            )
        return suggestions

    @staticmethod
    def cluster_topics(topics: list[str]) -> list[list[str]]:
        """
        Group topics into connected components of a similarity graph
        (edge when word Jaccard > 0.3). Clusters and their members keep the
        order of `topics`.
        """
        graph = nx.Graph()
        graph.add_nodes_from(topics)
        for i, a in enumerate(topics):
            for b in topics[i + 1:]:
                if word_jaccard(a, b) > CLUSTER_SIMILARITY_THRESHOLD:
                    graph.add_edge(a, b)

        rank = {t: i for i, t in enumerate(topics)}
        clusters = [sorted(component, key=rank.__getitem__) for component in nx.connected_components(graph)]
        return sorted(clusters, key=lambda c: rank[c[0]])

    @staticmethod
    def generate_cluster_name(cluster: list[str]) -> str:
        """Two most frequent words longer than 3 characters, title-cased."""
        words = Counter(w for topic in cluster for w in topic.split() if len(w) > 3)
        top_words = [w for w, _ in words.most_common(2)]
        if not top_words:
            return cluster[0][:1].upper() + cluster[0][1:]
        return " & ".join(w[:1].upper() + w[1:] for w in top_words)

    @staticmethod
    def generate_keywords_from_topics(topics: list[str]) -> list[str]:
        keywords: dict[str, None] = {}
        for topic in topics:
            keywords[topic] = None
            for word in topic.split():
                if len(word) > 3:
                    keywords[word] = None
        return list(keywords)[:10]

    # =========================================================================
    # Templates & configuration
    # =========================================================================

    def get_available_templates(self) -> dict[str, FocusAreaTemplate]:
        return {t.id: t for t in iter_templates()}

    def get_filter_config(self) -> FilterConfig:
        return self.filter_config.model_copy(deep=True)

    def update_filter_config(self, **changes: Any) -> FilterConfig:
        """
        Merge new values into the filter config.

        Raises:
            DataValidationError: On unknown keys or invalid values
        """
        unknown = set(changes) - set(FilterConfig.model_fields)
        if unknown:
            raise DataValidationError(f"Unknown filter config keys: {sorted(unknown)}")
        try:
            self.filter_config = FilterConfig.model_validate({**self.filter_config.model_dump(), **changes})
        except ValidationError as e:
            raise DataValidationError(f"Invalid filter config: {e}") from e
        logger.info("Updated filter config", keys=sorted(changes))
        return self.get_filter_config()

    async def _list(self, user_id: str) -> list[FocusArea]:
        async with persistence_context("list focus areas"):
            return await self.repository.list_for_user(user_id)

    async def _remove_from_active(self, user_id: str, focus_area_id: str) -> None:
        active_ids = await self.repository.get_active_ids(user_id)
        if focus_area_id in active_ids:
            await self.repository.set_active_ids(user_id, [i for i in active_ids if i != focus_area_id])

    @staticmethod
    def _template_suggestion(template: FocusAreaTemplate) -> FocusAreaSuggestion:
        return FocusAreaSuggestion(
            name=template.name,
            description=template.description,
            topics=list(template.topics),
            categories=list(template.categories),
            keywords=list(template.keywords),
            source_types=list(template.source_types),
            priority=template.priority,
            reason="Popular focus area",
            confidence=0.5,
            template_id=template.id,
        )
