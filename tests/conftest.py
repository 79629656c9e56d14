"""Shared pytest fixtures."""

from __future__ import annotations

import os

import pytest

from pagepilot.context.host import StaticHostEnvironment

from tests.helpers import FakeClock, FakeDocumentStore, FakeExtractor


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    for name in list(os.environ):
        if name.startswith("PAGEPILOT_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("PAGEPILOT_LOG_DIR", str(tmp_path / "logs"))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def host() -> StaticHostEnvironment:
    return StaticHostEnvironment("https://www.example.com/articles/intro.html", "Intro")


@pytest.fixture
def extractor() -> FakeExtractor:
    return FakeExtractor()


@pytest.fixture
def document_store() -> FakeDocumentStore:
    return FakeDocumentStore()
