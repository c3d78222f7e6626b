import json
from uuid import uuid4

import pytest

from thesis_validator.config import get_settings
from thesis_validator.main import _job_config, build_parser, run


@pytest.fixture
def cli_env(monkeypatch, tmp_path):
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_submit_defaults() -> None:
    engagement_id = uuid4()

    args = build_parser().parse_args(["submit", str(engagement_id), "--thesis", "Margins expand"])

    assert args.engagement_id == engagement_id
    assert args.type == "research"
    assert _job_config(args) == {
        "thesis": "Margins expand",
        "depth": "standard",
        "ticker": None,
        "max_sources": 20,
    }


def test_stress_test_config_only_carries_intensity() -> None:
    args = build_parser().parse_args(
        ["submit", str(uuid4()), "--type", "stress_test", "--intensity", "aggressive"]
    )

    assert _job_config(args) == {"intensity": "aggressive"}


@pytest.mark.asyncio
async def test_submit_then_status(cli_env, capsys) -> None:
    engagement_id = uuid4()
    assert await run(["init-db"]) == 0

    assert await run(["submit", str(engagement_id), "--thesis", "Acme keeps pricing power"]) == 0
    receipt = json.loads(capsys.readouterr().out)
    assert receipt["created"] is True

    assert await run(["status", str(engagement_id), receipt["job_id"]]) == 0
    job = json.loads(capsys.readouterr().out)
    assert job["status"] == "queued"


@pytest.mark.asyncio
async def test_invalid_submission_exits_nonzero(cli_env, capsys) -> None:
    assert await run(["init-db"]) == 0

    assert await run(["submit", str(uuid4()), "--thesis", "too short"]) == 1
    error = json.loads(capsys.readouterr().err)
    assert error["error"]["code"] == "ValidationError"
