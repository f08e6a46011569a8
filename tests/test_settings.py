"""
tests.test_settings

Env-driven configuration and structured log events.
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError
from structlog.testing import capture_logs

from datarepo.db.models import Member
from datarepo.db.repositories.members import MemberRepository
from datarepo.settings import Settings


def test_env_prefix(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DATAREPO_LOCK_TIMEOUT_SECONDS", "1.5")
    monkeypatch.setenv("DATAREPO_DATABASE_URL", "postgresql+asyncpg://app:secret@db/app")

    settings = Settings()

    assert settings.lock_timeout_seconds == 1.5
    assert settings.database_url.startswith("postgresql+asyncpg://")
    assert "secret" not in repr(settings)


def test_lock_timeout_must_be_positive() -> None:
    with pytest.raises(ValidationError):
        Settings(lock_timeout_seconds=0)


@pytest.mark.asyncio
async def test_modifying_query_logs_affected_rows(new_uow) -> None:
    async with new_uow() as uow:
        members = uow.repository(MemberRepository)
        await members.save_all([Member("member1", 20), Member("member2", 5)])

        with capture_logs() as logs:
            await members.bulk_age_plus(20)

    (event,) = [e for e in logs if e["event"] == "query.modifying"]
    assert event["affected"] == 1
    assert event["subject"] == "Member.bulk_age_plus"
