"""
In-memory repositories.

Used by tests and single-process deployments. Models are deep-copied on the
way in and out so callers never share state with the store.
"""
from collections import deque
from datetime import datetime
from typing import Optional

from personalization.models.domain import (
    FocusArea,
    InteractionRecord,
    InterestProfile,
    LearningMetrics,
    Notification,
    ScoringConfig,
)
from personalization.repositories.base import (
    FocusAreaRepository,
    InteractionRepository,
    NotificationRepository,
    ProfileRepository,
    ScoringConfigRepository,
)


class InMemoryProfileRepository(ProfileRepository):
    def __init__(self):
        self._profiles: dict[str, InterestProfile] = {}

    async def get(self, user_id: str) -> Optional[InterestProfile]:
        profile = self._profiles.get(user_id)
        return profile.model_copy(deep=True) if profile else None

    async def save(self, profile: InterestProfile) -> None:
        self._profiles[profile.user_id] = profile.model_copy(deep=True)

    async def list_user_ids(self) -> list[str]:
        return list(self._profiles)


class InMemoryScoringConfigRepository(ScoringConfigRepository):
    def __init__(self):
        self._configs: dict[str, ScoringConfig] = {}

    async def get(self, user_id: str) -> Optional[ScoringConfig]:
        config = self._configs.get(user_id)
        return config.model_copy(deep=True) if config else None

    async def save(self, user_id: str, config: ScoringConfig) -> None:
        self._configs[user_id] = config.model_copy(deep=True)

    async def delete(self, user_id: str) -> None:
        self._configs.pop(user_id, None)


class InMemoryInteractionRepository(InteractionRepository):
    def __init__(self):
        self._records: dict[str, deque[InteractionRecord]] = {}
        self._metrics: dict[str, LearningMetrics] = {}

    async def append(self, user_id: str, record: InteractionRecord, max_records: int) -> None:
        buffer = self._records.get(user_id)
        if buffer is None or buffer.maxlen != max_records:
            buffer = deque(buffer or (), maxlen=max_records)
            self._records[user_id] = buffer
        buffer.append(record.model_copy(deep=True))

    async def list_records(self, user_id: str) -> list[InteractionRecord]:
        return [r.model_copy(deep=True) for r in self._records.get(user_id, ())]

    async def clear(self, user_id: str) -> None:
        self._records.pop(user_id, None)
        self._metrics.pop(user_id, None)

    async def list_user_ids(self) -> list[str]:
        return list(self._records)

    async def get_metrics(self, user_id: str) -> Optional[LearningMetrics]:
        metrics = self._metrics.get(user_id)
        return metrics.model_copy(deep=True) if metrics else None

    async def save_metrics(self, user_id: str, metrics: LearningMetrics) -> None:
        self._metrics[user_id] = metrics.model_copy(deep=True)


class InMemoryFocusAreaRepository(FocusAreaRepository):
    def __init__(self):
        # dict preserves insertion order, which is creation order
        self._areas: dict[str, FocusArea] = {}
        self._active: dict[str, list[str]] = {}

    async def get(self, focus_area_id: str) -> Optional[FocusArea]:
        area = self._areas.get(focus_area_id)
        return area.model_copy(deep=True) if area else None

    async def list_for_user(self, user_id: str) -> list[FocusArea]:
        return [a.model_copy(deep=True) for a in self._areas.values() if a.user_id == user_id]

    async def save(self, focus_area: FocusArea) -> None:
        self._areas[focus_area.id] = focus_area.model_copy(deep=True)

    async def delete(self, focus_area_id: str) -> bool:
        return self._areas.pop(focus_area_id, None) is not None

    async def get_active_ids(self, user_id: str) -> list[str]:
        return list(self._active.get(user_id, []))

    async def set_active_ids(self, user_id: str, focus_area_ids: list[str]) -> None:
        self._active[user_id] = list(focus_area_ids)


class InMemoryNotificationRepository(NotificationRepository):
    def __init__(self):
        self._history: dict[str, list[Notification]] = {}

    async def add(self, notification: Notification) -> None:
        self._history.setdefault(notification.user_id, []).append(
            notification.model_copy(deep=True)
        )

    async def list_for_user(self, user_id: str) -> list[Notification]:
        return [n.model_copy(deep=True) for n in self._history.get(user_id, [])]

    async def prune(self, older_than: datetime) -> int:
        removed = 0
        for user_id in list(self._history):
            kept = [n for n in self._history[user_id] if n.timestamp >= older_than]
            removed += len(self._history[user_id]) - len(kept)
            if kept:
                self._history[user_id] = kept
            else:
                del self._history[user_id]
        return removed

    async def list_all(self) -> list[Notification]:
        return [n.model_copy(deep=True) for items in self._history.values() for n in items]

    async def count(self) -> int:
        return sum(len(items) for items in self._history.values())

    async def clear(self) -> None:
        self._history.clear()
