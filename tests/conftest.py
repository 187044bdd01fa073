"""Shared fixtures for learning-run tests.

Every test gets built-in config defaults and a fresh SQLite file under
tmp_path; nothing touches the working directory.
"""

from unittest.mock import MagicMock

import pytest

from learnrun.config.app_config import clear_config_cache
from learnrun.core.run_lifecycle import RunLifecycleManager
from learnrun.db import curriculum_repository
from learnrun.db.curriculum_repository import QuestionRecord
from learnrun.db.database import get_db, init_db, reset_db_path
from learnrun.llm.client import LLMConfig, LLMResponse

# Canonical answers for the seeded literal questions
CORRECT_ANSWERS = {
    "q-cpu": "CPU load is 42%.",
    "q-mem": "Memory usage is 80%.",
    "q-disk": "Disk usage is 65%.",
    "q-resp": "Response time is 120ms.",
    "q-status": "Status code is 503.",
}

# (level_id, domain, level_number, questions)
SEED_LEVELS = [
    (
        "metrics-L1",
        "metrics",
        1,
        [
            ("q-cpu", "CPU Load = 42%. Describe.", "CPU_LOAD", "literal"),
            ("q-mem", "Memory Usage = 80%. Describe.", "MEMORY_USAGE", "literal"),
            ("q-disk", "Disk Usage = 65%. Describe.", "DISK_USAGE", "literal"),
        ],
    ),
    (
        "metrics-L2",
        "metrics",
        2,
        [
            ("q-resp", "Response Time = 120ms. Describe.", "RESPONSE_TIME", "literal"),
            ("q-status", "Status Code = 503. Describe.", "STATUS_CODE", "literal"),
        ],
    ),
    (
        "metrics-L3",
        "metrics",
        3,
        [
            ("q-free", "Why does a 503 matter to users?", "", "freeform"),
        ],
    ),
    ("metrics-L9", "metrics", 9, []),
]


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Use built-in config defaults and forget any database path."""
    monkeypatch.setenv("LEARNRUN_CONFIG", str(tmp_path / "missing-config.yaml"))
    monkeypatch.delenv("LEARNRUN_DB_PATH", raising=False)
    clear_config_cache()
    reset_db_path()
    yield
    clear_config_cache()
    reset_db_path()


@pytest.fixture
def db_path(tmp_path):
    """Initialized empty database."""
    path = tmp_path / "test.db"
    init_db(path)
    return path


@pytest.fixture
def curriculum(db_path) -> dict[str, QuestionRecord]:
    """Seed levels 1-3 (and an empty level 9) of the 'metrics' domain."""
    questions: dict[str, QuestionRecord] = {}
    with get_db(immediate=True) as conn:
        for level_id, domain, level_number, level_questions in SEED_LEVELS:
            curriculum_repository.insert_level(conn, level_id, domain, level_number)
            for position, (qid, prompt, category, fmt) in enumerate(level_questions, start=1):
                questions[qid] = curriculum_repository.insert_question(
                    conn,
                    question_id=qid,
                    level_id=level_id,
                    position=position,
                    prompt=prompt,
                    expected_category=category,
                    expected_format=fmt,
                    expected_value=CORRECT_ANSWERS.get(qid, "The service is unavailable."),
                )
    return questions


@pytest.fixture
def correct_answers() -> dict[str, str]:
    """Canonical answers keyed by question id."""
    return dict(CORRECT_ANSWERS)


@pytest.fixture
def manager(curriculum) -> RunLifecycleManager:
    """Manager with default policy and no provider."""
    return RunLifecycleManager()


@pytest.fixture
def mock_llm_client(curriculum):
    """Mock LLM client that answers every seeded question correctly."""
    prompts = {q.prompt: CORRECT_ANSWERS.get(qid, "It means the site is down.") for qid, q in curriculum.items()}

    def generate(prompt, system_prompt=None, temperature=None, max_tokens=None):
        return LLMResponse(
            content=prompts.get(prompt, "Unrelated text."),
            model="test-model",
            provider="lmstudio",
            latency_ms=12,
        )

    client = MagicMock()
    client.config = LLMConfig(model="test-model")
    client.generate.side_effect = generate
    client.is_available.return_value = True
    return client
