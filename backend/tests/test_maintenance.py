"""
Tests for the periodic maintenance job and scheduler wiring.
"""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from factories import NOW, fill, make_content, make_record
from personalization.jobs.maintenance import MaintenanceJob
from personalization.main import create_scheduler
from personalization.models.domain import InterestEntry, InterestProfile, NotificationChannel


async def seed_state(services):
    """A stale profile, week-old breaking news and a learner that is due."""
    await services.interest_modeler.repository.save(
        InterestProfile(
            user_id="stale",
            topics=[InterestEntry(name="AI", weight=0.8, last_updated=NOW - timedelta(days=15))],
        )
    )
    detector = services.breaking_news
    content = make_content("old-story", topics=["Markets"], age=timedelta(minutes=5))
    analysis = detector.analyze_content(content, now=NOW - timedelta(days=8))
    await detector.send_notification("reader", content, analysis, NotificationChannel.IN_APP, NOW - timedelta(days=8))
    await fill(services.interaction_learner, "learner", [make_record(90, 0.0) for _ in range(10)])


class TestMaintenanceJob:
    """Tests for one maintenance pass."""

    async def test_run(self, services):
        await seed_state(services)

        stats = await MaintenanceJob(services).run(NOW)

        assert stats["profiles_decayed"] == 1
        assert stats["tracked_items_removed"] == 1
        assert stats["notifications_removed"] == 1
        assert stats["learning_cycles_run"] == 1
        assert stats["learning_failures"] == 0
        assert stats["errors"] == []

        profile = await services.interest_modeler.find_profile("stale")
        assert profile.topics[0].weight == pytest.approx(0.8 * 0.95 ** 2)
        metrics = await services.interaction_learner.get_user_learning_metrics("learner", NOW)
        assert metrics.learning_cycles == 1

    async def test_second_run_is_quiet(self, services):
        await seed_state(services)
        job = MaintenanceJob(services)
        await job.run(NOW)

        stats = await job.run(NOW)

        assert stats["profiles_decayed"] == 0
        assert stats["tracked_items_removed"] == 0

    async def test_learning_failure_counted(self, services, monkeypatch):
        await seed_state(services)
        monkeypatch.setattr(
            services.interaction_learner,
            "perform_learning",
            AsyncMock(side_effect=RuntimeError("boom")),
        )

        stats = await MaintenanceJob(services).run(NOW)

        assert stats["learning_failures"] == 1
        assert stats["errors"] == ["learner: boom"]

    async def test_decay_failure_propagates(self, services, monkeypatch):
        monkeypatch.setattr(
            services.interest_modeler,
            "apply_decay_to_all",
            AsyncMock(side_effect=RuntimeError("storage offline")),
        )

        with pytest.raises(RuntimeError):
            await MaintenanceJob(services).run(NOW)


class TestScheduler:
    """Tests for the maintenance scheduler."""

    def test_maintenance_job_registered(self, services):
        scheduler = create_scheduler(services)

        job = scheduler.get_job("maintenance")

        assert job is not None
        assert job.trigger.interval == timedelta(minutes=services.settings.maintenance_interval_minutes)
