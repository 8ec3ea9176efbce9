"""
Tests for runecore.config
"""

import pytest

from runecore.config import Settings


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("NETWORK", "UNISAT_API_URL", "MEMPOOL_API_URL", "UNISAT_API_KEY"):
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    settings = Settings(_env_file=None)
    assert settings.network == "mainnet"
    assert settings.get_unisat_api_url() == "https://open-api.unisat.io"
    assert settings.get_mempool_api_url() == "https://mempool.space/api"


def test_env_overrides(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("NETWORK", "testnet")
    monkeypatch.setenv("MEMPOOL_API_URL", "http://localhost:8999/api/")
    settings = Settings(_env_file=None)
    assert settings.get_unisat_api_url() == "https://open-api-testnet.unisat.io"
    assert settings.get_mempool_api_url() == "http://localhost:8999/api"


def test_no_indexer_default_for_regtest():
    settings = Settings(_env_file=None, network="regtest")
    with pytest.raises(ValueError):
        settings.get_unisat_api_url()
    assert settings.get_mempool_api_url() == "http://127.0.0.1:8999/api"
