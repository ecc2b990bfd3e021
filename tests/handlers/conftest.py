"""Fixtures wiring the registry, signer and scanner doubles."""

from __future__ import annotations

import pytest

from registry_fakes import FakeClients, FakeRegistry, FakeScanner, FakeSigner


@pytest.fixture
def clients(tmp_path) -> FakeClients:
    clients = FakeClients()
    clients.registries["hub"] = FakeRegistry(tmp_path)
    clients.registries["internal"] = FakeRegistry(tmp_path)
    return clients


@pytest.fixture
def signer() -> FakeSigner:
    return FakeSigner()


@pytest.fixture
def scanner() -> FakeScanner:
    return FakeScanner()
