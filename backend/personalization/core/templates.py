"""
Built-in focus area templates.

Templates seed new focus areas and are offered as suggestions to users
without interaction history.
"""

from dataclasses import dataclass
from typing import Iterator

from personalization.models.domain import FocusAreaPriority


@dataclass(frozen=True)
class FocusAreaTemplate:
    """A ready-made focus area definition."""

    id: str
    name: str
    description: str
    topics: tuple[str, ...]
    categories: tuple[str, ...]
    keywords: tuple[str, ...]
    source_types: tuple[str, ...]
    priority: FocusAreaPriority

    def to_data(self) -> dict:
        """Focus area data as accepted by FocusAreaManager.create_focus_area."""
        return {
            "name": self.name,
            "description": self.description,
            "topics": list(self.topics),
            "categories": list(self.categories),
            "keywords": list(self.keywords),
            "source_types": list(self.source_types),
            "priority": self.priority.value,
        }


FOCUS_AREA_TEMPLATES: tuple[FocusAreaTemplate, ...] = (
    FocusAreaTemplate(
        id="technology",
        name="Technology",
        description="Latest developments in technology and innovation",
        topics=(
            "artificial intelligence",
            "machine learning",
            "blockchain",
            "cybersecurity",
            "software development",
        ),
        categories=("technology", "innovation", "startups"),
        keywords=("tech", "digital", "innovation", "software", "hardware"),
        source_types=("blog", "academic", "news"),
        priority=FocusAreaPriority.HIGH,
    ),
    FocusAreaTemplate(
        id="business",
        name="Business & Finance",
        description="Business news, market trends, and financial insights",
        topics=("finance", "markets", "economics", "business strategy", "entrepreneurship"),
        categories=("business", "finance", "economics"),
        keywords=("business", "market", "finance", "economy", "investment"),
        source_types=("news", "blog", "academic"),
        priority=FocusAreaPriority.MEDIUM,
    ),
    FocusAreaTemplate(
        id="science",
        name="Science & Research",
        description="Scientific discoveries and research developments",
        topics=("physics", "biology", "chemistry", "medicine", "climate science"),
        categories=("science", "research", "health"),
        keywords=("research", "study", "discovery", "experiment", "scientific"),
        source_types=("academic", "news"),
        priority=FocusAreaPriority.MEDIUM,
    ),
    FocusAreaTemplate(
        id="health",
        name="Health & Wellness",
        description="Health news, medical breakthroughs, and wellness tips",
        topics=("medicine", "health", "wellness", "nutrition", "mental health"),
        categories=("health", "medicine", "wellness"),
        keywords=("health", "medical", "wellness", "treatment", "disease"),
        source_types=("news", "blog", "academic"),
        priority=FocusAreaPriority.HIGH,
    ),
)


def iter_templates() -> Iterator[FocusAreaTemplate]:
    yield from FOCUS_AREA_TEMPLATES


def get_template(template_id: str) -> FocusAreaTemplate | None:
    """Get a template by ID."""
    for template in FOCUS_AREA_TEMPLATES:
        if template.id == template_id:
            return template
    return None
