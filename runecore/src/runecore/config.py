"""
Shared settings for marketplace components, loaded from the environment.
"""

from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

from runecore.constants import REVALIDATION_BATCH_DELAY, REVALIDATION_BATCH_SIZE

UNISAT_API_URLS = {
    "mainnet": "https://open-api.unisat.io",
    "testnet": "https://open-api-testnet.unisat.io",
}

MEMPOOL_API_URLS = {
    "mainnet": "https://mempool.space/api",
    "testnet": "https://mempool.space/testnet/api",
    "signet": "https://mempool.space/signet/api",
    "regtest": "http://127.0.0.1:8999/api",
}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False
    )

    network: Literal["mainnet", "testnet", "signet", "regtest"] = "mainnet"

    unisat_api_url: str = ""
    unisat_api_key: str = ""

    mempool_api_url: str = ""

    request_timeout: float = 30.0

    revalidation_batch_size: int = REVALIDATION_BATCH_SIZE
    revalidation_batch_delay: float = REVALIDATION_BATCH_DELAY

    log_level: str = "INFO"

    def get_unisat_api_url(self) -> str:
        url = self.unisat_api_url or UNISAT_API_URLS.get(self.network)
        if not url:
            raise ValueError(f"No default indexer URL for {self.network}, set UNISAT_API_URL")
        return url.rstrip("/")

    def get_mempool_api_url(self) -> str:
        return (self.mempool_api_url or MEMPOOL_API_URLS[self.network]).rstrip("/")


def get_settings() -> Settings:
    return Settings()
