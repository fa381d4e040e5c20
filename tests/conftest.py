"""Shared fixtures for the FQL test suite."""

import logging

import pytest

from form_query.config import Settings
from form_query.datasource import InMemoryDataSource
from form_query.executor import QueryExecutor
from form_query.logging_config import PACKAGE_LOGGER

FORM = "aaaaaaaa-0000-4000-8000-000000000001"
OTHER_FORM = "aaaaaaaa-0000-4000-8000-000000000002"

SCORE = "bbbbbbbb-0000-4000-8000-000000000001"
NAME = "bbbbbbbb-0000-4000-8000-000000000002"
TEAM = "bbbbbbbb-0000-4000-8000-000000000003"
BONUS = "bbbbbbbb-0000-4000-8000-000000000004"

UNKNOWN_FIELD = "cccccccc-0000-4000-8000-000000000009"


@pytest.fixture
def source() -> InMemoryDataSource:
    """A form with four fields and no submissions."""
    src = InMemoryDataSource(
        forms=[{"id": FORM, "name": "Scores"}, {"id": OTHER_FORM, "name": "Empty"}],
        users=[
            {"id": "u1", "first_name": "Ada", "last_name": "Lovelace", "email": "ada@example.com"},
            {"id": "u2", "display_name": "Grace", "email": "grace@example.com"},
        ],
        groups=[{"id": "g1", "name": "Reviewers"}],
        projects=[{"id": "p1", "name": "Pilot"}],
    )
    src.add_field(FORM, SCORE, "Score", type="number", custom_config={"weightage": 2})
    src.add_field(FORM, NAME, "Name")
    src.add_field(FORM, TEAM, "Team")
    src.add_field(FORM, BONUS, "Bonus", type="number")
    return src


@pytest.fixture
def scored(source: InMemoryDataSource) -> InMemoryDataSource:
    """The form with three submissions: scores 5, 15 and 25."""
    source.add_submission(FORM, {SCORE: 5, NAME: "ann", TEAM: "red"}, submitted_by="u1")
    source.add_submission(FORM, {SCORE: 15, NAME: "bob", TEAM: "blue"}, submitted_by="u2")
    source.add_submission(FORM, {SCORE: 25, NAME: "cy", TEAM: "red"}, submitted_by="u1")
    return source


@pytest.fixture
def executor(scored: InMemoryDataSource) -> QueryExecutor:
    return QueryExecutor(scored, settings=Settings(resolve_labels=True))


@pytest.fixture(autouse=True)
def restore_package_logger():
    """Undo configure_logging() so caplog keeps seeing package records."""
    logger = logging.getLogger(PACKAGE_LOGGER)
    saved = (list(logger.handlers), logger.level, logger.propagate)
    yield
    logger.handlers[:] = saved[0]
    logger.setLevel(saved[1])
    logger.propagate = saved[2]
