"""
Shared fixtures for personalization tests.

Everything runs against the in-memory repositories so tests never touch a
database unless they create one explicitly.
"""

from datetime import datetime

import pytest

from factories import NOW
from personalization.config import Settings
from personalization.main import PersonalizationServices, build_services


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None)


@pytest.fixture
def services(settings) -> PersonalizationServices:
    return build_services(settings)


@pytest.fixture
def interest_modeler(services):
    return services.interest_modeler


@pytest.fixture
def relevance_scorer(services):
    return services.relevance_scorer


@pytest.fixture
def interaction_learner(services):
    return services.interaction_learner


@pytest.fixture
def breaking_news(services):
    return services.breaking_news


@pytest.fixture
def focus_areas(services):
    return services.focus_areas
