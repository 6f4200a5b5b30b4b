"""Shared fixtures for tests."""
from typing import Any, Callable

import pytest

from mentor_matching.data_models import Mentee, Mentor


@pytest.fixture
def make_mentee() -> Callable[..., Mentee]:
    """Factory for mentees; keyword arguments override the defaults."""

    def _make(id: str = "mentee-1", **overrides: Any) -> Mentee:
        data = {
            "id": id,
            "name": f"Mentee {id}",
            "role": "Software Engineer",
            "experience_years": "3-5",
            "location_timezone": "Central Europe (CET)",
            "topics_to_learn": ["Leadership & management", "Career growth & progression"],
            "meeting_frequency": "Monthly",
        }
        data.update(overrides)
        return Mentee(**data)

    return _make


@pytest.fixture
def make_mentor() -> Callable[..., Mentor]:
    """Factory for mentors; keyword arguments override the defaults."""

    def _make(id: str = "mentor-1", **overrides: Any) -> Mentor:
        data = {
            "id": id,
            "name": f"Mentor {id}",
            "role": "Engineering Manager",
            "experience_years": "6-10",
            "location_timezone": "Central Europe (CET)",
            "topics_to_mentor": ["Leadership & management", "Career growth & progression"],
            "meeting_frequency": "Monthly",
            "capacity_remaining": 2,
        }
        data.update(overrides)
        return Mentor(**data)

    return _make


@pytest.fixture
def cohort(make_mentee, make_mentor):
    """Eight mentees and four mentors with mixed topics, levels and capacity."""
    topics = [
        ["Leadership & management"],
        ["Technical / product knowledge"],
        ["Communication & soft skills", "Leadership & management"],
        ["Strategic thinking & vision"],
        ["Career growth & progression"],
        ["Technical / product knowledge", "Cross-functional collaboration"],
        ["Work-life balance & wellbeing"],
        ["Leadership & management", "Strategic thinking & vision"],
    ]
    experience = ["0-2", "3-5", "3-5", "6-10", "0-2", "3-5", "10+", "6-10"]
    zones = ["CET", "GMT", "EST", "CET", "PST", "UTC+2", "AEST", "CET"]
    mentees = [
        make_mentee(
            f"me-{i}",
            topics_to_learn=topics[i],
            experience_years=experience[i],
            location_timezone=zones[i],
            goals_text=f"I want to grow in {topics[i][0].lower()}",
        )
        for i in range(8)
    ]
    mentors = [
        make_mentor("mr-a", capacity_remaining=1, topics_to_mentor=["Leadership & management", "Strategic thinking & vision"]),
        make_mentor("mr-b", capacity_remaining=2, experience_years="10+", topics_to_mentor=["Technical / product knowledge"]),
        make_mentor("mr-c", capacity_remaining=3, location_timezone="EST", topics_to_mentor=["Communication & soft skills", "Career growth & progression"]),
        make_mentor("mr-d", capacity_remaining=0, topics_to_mentor=["Leadership & management"]),
    ]
    return mentees, mentors
