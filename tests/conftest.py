"""Shared test fixtures for thyra."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import pytest

from thyra.config import ThyraConfig
from thyra.core import ThyraCore
from thyra.dataitem import DataItem, parse_data_item
from thyra.errors import ContentNotFound, SubmissionFailed
from thyra.wallet import Wallet

GATEWAY = "https://gateway.test"


class FakeArweave:
    """In-memory bundler + gateway.

    Parses and verifies every submitted data item, stores its data under
    its id, and serves it back from ``fetch``. Set ``fail_status`` to make
    submissions fail once ``fail_after`` items have been accepted.
    """

    gateway_url = GATEWAY

    def __init__(self) -> None:
        self.items: dict[str, bytes] = {}
        self.submitted: list[DataItem] = []
        self.fetched: list[str] = []
        self.fail_status: Optional[int] = None
        self.fail_after = 0

    def data_url(self, tx_id: str) -> str:
        return f"{self.gateway_url}/{tx_id}"

    def post_data_item(self, raw: bytes) -> dict:
        if self.fail_status is not None and len(self.submitted) >= self.fail_after:
            raise SubmissionFailed(self.fail_status, "rejected by fake bundler")
        item = parse_data_item(raw)
        assert item.verify(), "fake bundler received a badly signed item"
        self.submitted.append(item)
        self.items[item.id] = item.data
        return {"id": item.id}

    def fetch(self, tx_id: str) -> bytes:
        self.fetched.append(tx_id)
        if tx_id not in self.items:
            raise ContentNotFound(tx_id, 404)
        return self.items[tx_id]


@pytest.fixture(scope="session")
def wallet() -> Wallet:
    """One RSA-4096 wallet for the whole session (generation is slow)."""
    return Wallet.generate()


@pytest.fixture
def fake_network() -> FakeArweave:
    return FakeArweave()


@pytest.fixture
def thyra_home(tmp_path: Path) -> Path:
    """Provide a temporary Thyra home directory."""
    home = tmp_path / ".thyra"
    home.mkdir()
    return home


@pytest.fixture
def config(thyra_home: Path) -> ThyraConfig:
    return ThyraConfig(home=thyra_home, gateway_url=GATEWAY, lock_timeout=2.0)


@pytest.fixture
def core(config: ThyraConfig, fake_network: FakeArweave, wallet: Wallet) -> ThyraCore:
    """An initialized core whose drive was bootstrapped against the fake."""
    return ThyraCore.initialize(config, client=fake_network, wallet=wallet)
