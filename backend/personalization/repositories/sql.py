"""
SQLAlchemy repositories for profiles, scoring configs and focus areas.

Nested structures (interest entries, weights) are stored in JSON columns
and validated back into domain models on read.
"""
from typing import Optional

from sqlalchemy import delete, select

from personalization.models.database import (
    Database,
    DBActiveFilterSet,
    DBFocusArea,
    DBInterestProfile,
    DBScoringConfig,
)
from personalization.models.domain import (
    AdaptiveWeights,
    ExplicitPreferences,
    FocusArea,
    InterestEntry,
    InterestProfile,
    RecencyDecay,
    ScoringConfig,
    ScoringWeights,
    model_to_json,
)
from personalization.repositories.base import (
    FocusAreaRepository,
    ProfileRepository,
    ScoringConfigRepository,
)


def _entries_to_json(entries: list[InterestEntry]) -> list[dict]:
    return [model_to_json(e) for e in entries]


def _entries_from_json(data: Optional[list]) -> list[InterestEntry]:
    return [InterestEntry.model_validate(e) for e in data or []]


class SQLProfileRepository(ProfileRepository):
    def __init__(self, database: Database):
        self.database = database

    async def get(self, user_id: str) -> Optional[InterestProfile]:
        async with self.database.async_session() as session:
            row = await session.get(DBInterestProfile, user_id)
            if row is None:
                return None
            return InterestProfile(
                user_id=row.user_id,
                topics=_entries_from_json(row.topics_json),
                categories=_entries_from_json(row.categories_json),
                source_types=_entries_from_json(row.source_types_json),
                explicit_preferences=ExplicitPreferences.model_validate(
                    row.explicit_preferences_json or {}
                ),
                adaptive_weights=AdaptiveWeights.model_validate(row.adaptive_weights_json or {}),
                learning_rate=row.learning_rate,
                decay_rate=row.decay_rate,
                created_at=row.created_at,
                updated_at=row.updated_at,
            )

    async def save(self, profile: InterestProfile) -> None:
        async with self.database.async_session() as session:
            row = await session.get(DBInterestProfile, profile.user_id)
            if row is None:
                row = DBInterestProfile(user_id=profile.user_id, created_at=profile.created_at)
                session.add(row)

            row.topics_json = _entries_to_json(profile.topics)
            row.categories_json = _entries_to_json(profile.categories)
            row.source_types_json = _entries_to_json(profile.source_types)
            row.explicit_preferences_json = model_to_json(profile.explicit_preferences)
            row.adaptive_weights_json = model_to_json(profile.adaptive_weights)
            row.learning_rate = profile.learning_rate
            row.decay_rate = profile.decay_rate
            row.updated_at = profile.updated_at

            await session.commit()

    async def list_user_ids(self) -> list[str]:
        async with self.database.async_session() as session:
            result = await session.execute(select(DBInterestProfile.user_id))
            return list(result.scalars().all())


class SQLScoringConfigRepository(ScoringConfigRepository):
    def __init__(self, database: Database):
        self.database = database

    async def get(self, user_id: str) -> Optional[ScoringConfig]:
        async with self.database.async_session() as session:
            row = await session.get(DBScoringConfig, user_id)
            if row is None:
                return None
            return ScoringConfig(
                weights=ScoringWeights.model_validate(row.weights_json),
                recency_decay=RecencyDecay.model_validate(row.recency_decay_json),
                updated_at=row.updated_at,
            )

    async def save(self, user_id: str, config: ScoringConfig) -> None:
        async with self.database.async_session() as session:
            row = await session.get(DBScoringConfig, user_id)
            if row is None:
                row = DBScoringConfig(user_id=user_id)
                session.add(row)
            row.weights_json = model_to_json(config.weights)
            row.recency_decay_json = model_to_json(config.recency_decay)
            row.updated_at = config.updated_at
            await session.commit()

    async def delete(self, user_id: str) -> None:
        async with self.database.async_session() as session:
            await session.execute(delete(DBScoringConfig).where(DBScoringConfig.user_id == user_id))
            await session.commit()


class SQLFocusAreaRepository(FocusAreaRepository):
    def __init__(self, database: Database):
        self.database = database

    @staticmethod
    def _to_domain(row: DBFocusArea) -> FocusArea:
        return FocusArea(
            id=row.id,
            user_id=row.user_id,
            name=row.name,
            description=row.description or "",
            topics=list(row.topics_json or []),
            categories=list(row.categories_json or []),
            keywords=list(row.keywords_json or []),
            source_types=list(row.source_types_json or []),
            priority=row.priority,
            is_active=row.is_active,
            content_count=row.content_count,
            last_matched_at=row.last_matched_at,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    async def get(self, focus_area_id: str) -> Optional[FocusArea]:
        async with self.database.async_session() as session:
            row = await session.get(DBFocusArea, focus_area_id)
            return self._to_domain(row) if row else None

    async def list_for_user(self, user_id: str) -> list[FocusArea]:
        async with self.database.async_session() as session:
            result = await session.execute(
                select(DBFocusArea)
                .where(DBFocusArea.user_id == user_id)
                .order_by(DBFocusArea.created_at, DBFocusArea.id)
            )
            return [self._to_domain(row) for row in result.scalars().all()]

    async def save(self, focus_area: FocusArea) -> None:
        async with self.database.async_session() as session:
            row = await session.get(DBFocusArea, focus_area.id)
            if row is None:
                row = DBFocusArea(
                    id=focus_area.id,
                    user_id=focus_area.user_id,
                    created_at=focus_area.created_at,
                )
                session.add(row)

            row.name = focus_area.name
            row.description = focus_area.description
            row.topics_json = list(focus_area.topics)
            row.categories_json = list(focus_area.categories)
            row.keywords_json = list(focus_area.keywords)
            row.source_types_json = list(focus_area.source_types)
            row.priority = focus_area.priority.value
            row.is_active = focus_area.is_active
            row.content_count = focus_area.content_count
            row.last_matched_at = focus_area.last_matched_at
            row.updated_at = focus_area.updated_at

            await session.commit()

    async def delete(self, focus_area_id: str) -> bool:
        async with self.database.async_session() as session:
            result = await session.execute(
                delete(DBFocusArea).where(DBFocusArea.id == focus_area_id)
            )
            await session.commit()
            return result.rowcount > 0

    async def get_active_ids(self, user_id: str) -> list[str]:
        async with self.database.async_session() as session:
            row = await session.get(DBActiveFilterSet, user_id)
            return list(row.focus_area_ids_json or []) if row else []

    async def set_active_ids(self, user_id: str, focus_area_ids: list[str]) -> None:
        async with self.database.async_session() as session:
            row = await session.get(DBActiveFilterSet, user_id)
            if row is None:
                row = DBActiveFilterSet(user_id=user_id)
                session.add(row)
            row.focus_area_ids_json = list(focus_area_ids)
            await session.commit()
