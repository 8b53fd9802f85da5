"""
Persistence ports and their in-memory / SQLAlchemy implementations.
"""
from personalization.repositories.base import (
    FocusAreaRepository,
    InteractionRepository,
    NotificationRepository,
    NotificationSender,
    ProfileRepository,
    ScoringConfigRepository,
)
from personalization.repositories.memory import (
    InMemoryFocusAreaRepository,
    InMemoryInteractionRepository,
    InMemoryNotificationRepository,
    InMemoryProfileRepository,
    InMemoryScoringConfigRepository,
)
from personalization.repositories.sql import (
    SQLFocusAreaRepository,
    SQLProfileRepository,
    SQLScoringConfigRepository,
)

__all__ = [
    # Ports
    "ProfileRepository",
    "ScoringConfigRepository",
    "InteractionRepository",
    "FocusAreaRepository",
    "NotificationRepository",
    "NotificationSender",
    # In-memory
    "InMemoryProfileRepository",
    "InMemoryScoringConfigRepository",
    "InMemoryInteractionRepository",
    "InMemoryFocusAreaRepository",
    "InMemoryNotificationRepository",
    # SQLAlchemy
    "SQLProfileRepository",
    "SQLScoringConfigRepository",
    "SQLFocusAreaRepository",
]
