"""
Persistence ports for the personalization core.
Services only talk to these interfaces; memory.py and sql.py implement them.
"""
from abc import ABC, abstractmethod
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


class ProfileRepository(ABC):
    """Storage for interest profiles, keyed by user id."""

    @abstractmethod
    async def get(self, user_id: str) -> Optional[InterestProfile]:
        """
        Fetch a user's profile.

        Returns:
            The stored profile, or None if the user has none
        """
        pass

    @abstractmethod
    async def save(self, profile: InterestProfile) -> None:
        """Insert or replace a profile."""
        pass

    @abstractmethod
    async def list_user_ids(self) -> list[str]:
        pass


class ScoringConfigRepository(ABC):
    """Storage for per-user relevance scoring configuration."""

    @abstractmethod
    async def get(self, user_id: str) -> Optional[ScoringConfig]:
        pass

    @abstractmethod
    async def save(self, user_id: str, config: ScoringConfig) -> None:
        pass

    @abstractmethod
    async def delete(self, user_id: str) -> None:
        """Drop a user's config so the process defaults apply again."""
        pass


class InteractionRepository(ABC):
    """Bounded per-user buffers of interaction records plus learning metrics."""

    @abstractmethod
    async def append(self, user_id: str, record: InteractionRecord, max_records: int) -> None:
        """
        Append a record, evicting the oldest beyond max_records.

        Args:
            user_id: Owner of the buffer
            record: Record to append
            max_records: Buffer capacity
        """
        pass

    @abstractmethod
    async def list_records(self, user_id: str) -> list[InteractionRecord]:
        """Records of a user, oldest first."""
        pass

    @abstractmethod
    async def clear(self, user_id: str) -> None:
        pass

    @abstractmethod
    async def list_user_ids(self) -> list[str]:
        pass

    @abstractmethod
    async def get_metrics(self, user_id: str) -> Optional[LearningMetrics]:
        pass

    @abstractmethod
    async def save_metrics(self, user_id: str, metrics: LearningMetrics) -> None:
        pass


class FocusAreaRepository(ABC):
    """Storage for focus areas and each user's ordered active filter set."""

    @abstractmethod
    async def get(self, focus_area_id: str) -> Optional[FocusArea]:
        pass

    @abstractmethod
    async def list_for_user(self, user_id: str) -> list[FocusArea]:
        """Focus areas of a user, in creation order."""
        pass

    @abstractmethod
    async def save(self, focus_area: FocusArea) -> None:
        pass

    @abstractmethod
    async def delete(self, focus_area_id: str) -> bool:
        """
        Delete a focus area.

        Returns:
            True if something was deleted
        """
        pass

    @abstractmethod
    async def get_active_ids(self, user_id: str) -> list[str]:
        pass

    @abstractmethod
    async def set_active_ids(self, user_id: str, focus_area_ids: list[str]) -> None:
        pass


class NotificationRepository(ABC):
    """Rolling history of breaking news notifications per user."""

    @abstractmethod
    async def add(self, notification: Notification) -> None:
        pass

    @abstractmethod
    async def list_for_user(self, user_id: str) -> list[Notification]:
        """Notifications of a user, oldest first."""
        pass

    @abstractmethod
    async def prune(self, older_than: datetime) -> int:
        """
        Drop notifications with a timestamp before `older_than`.

        Returns:
            Number of notifications removed
        """
        pass

    @abstractmethod
    async def list_all(self) -> list[Notification]:
        pass

    @abstractmethod
    async def count(self) -> int:
        pass

    @abstractmethod
    async def clear(self) -> None:
        pass


class NotificationSender(ABC):
    """Delivery boundary for notifications (push, email, in-app)."""

    @abstractmethod
    async def send(self, notification: Notification) -> None:
        """Deliver a notification. Raises on failure."""
        pass
