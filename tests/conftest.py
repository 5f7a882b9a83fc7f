"""Pytest configuration shared by the studyreview test suite."""

from __future__ import annotations

import os
import sys
from datetime import UTC, datetime
from pathlib import Path

import pytest

_BACKEND_ROOT = Path(__file__).resolve().parents[1] / "apps" / "backend"
if str(_BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(_BACKEND_ROOT))
_TESTS_ROOT = Path(__file__).resolve().parent
if str(_TESTS_ROOT) not in sys.path:
    sys.path.insert(0, str(_TESTS_ROOT))

# 実 Firestore へ接続しないよう、設定読み込み前にエミュレータ向けの値を入れておく。
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("FIRESTORE_EMULATOR_HOST", "localhost:8080")
os.environ.setdefault("FIRESTORE_PROJECT_ID", "test-project")

from firestore_fakes import FakeFirestoreClient  # noqa: E402
from studyreview.store import create_store  # noqa: E402
from studyreview.store.firestore_store import AppFirestoreStore  # noqa: E402

FIXED_NOW = datetime(2026, 3, 10, 12, 0, tzinfo=UTC)


class FixedClock:
    """Deterministic clock that tests can move forward explicitly."""

    def __init__(self, now: datetime = FIXED_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture()
def fake_client() -> FakeFirestoreClient:
    return FakeFirestoreClient()


@pytest.fixture()
def store(fake_client: FakeFirestoreClient) -> AppFirestoreStore:
    return create_store(fake_client)


@pytest.fixture()
def clock() -> FixedClock:
    return FixedClock()
