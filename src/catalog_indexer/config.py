"""Configuration Module

Connection settings are read from the environment; run options come from
the command line and are validated by ``IndexerOptions``.

Environment variables:
  TYPESENSE_HOST: Search engine host (default: localhost)
  TYPESENSE_PORT: Search engine port (default: 8108)
  TYPESENSE_PROTOCOL: http or https (default: http)
  TYPESENSE_API_KEY: API key sent in the X-TYPESENSE-API-KEY header
  TYPESENSE_COLLECTION: Target collection name (default: products)
  PRODUCTS_API_URL: Base URL of the upstream paginated product API
  PRODUCTS_PAGE_SIZE: Products requested per upstream page (default: 100)
  LOG_DIR: Directory for logs, checkpoints, samples and reports (default: logs)
"""

import os
from pathlib import Path
from typing import Any, Dict

from pydantic import BaseModel, Field

DEFAULT_PRODUCTS_API_URL = "https://csapi.claroshop.com/products/v1/products/"

UPSTREAM_TIMEOUT_S = 30.0
ENGINE_TIMEOUT_S = 60.0
FETCH_MAX_RETRIES = 3
FETCH_RETRY_DELAY_S = 1.0

BATCH_PAUSE_S = 0.2
PAGE_PAUSE_S = 0.1
PAGE_ERROR_PAUSE_S = 2.0


class Settings(BaseModel):
    """Endpoints and credentials for the upstream API and the search engine."""

    typesense_host: str = "localhost"
    typesense_port: int = 8108
    typesense_protocol: str = "http"
    typesense_api_key: str = ""
    collection_name: str = "products"
    products_api_url: str = DEFAULT_PRODUCTS_API_URL
    page_size: int = 100
    log_dir: Path = Path("logs")

    @property
    def typesense_url(self) -> str:
        return f"{self.typesense_protocol}://{self.typesense_host}:{self.typesense_port}"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            typesense_host=os.getenv("TYPESENSE_HOST", "localhost"),
            typesense_port=int(os.getenv("TYPESENSE_PORT", "8108")),
            typesense_protocol=os.getenv("TYPESENSE_PROTOCOL", "http"),
            typesense_api_key=os.getenv("TYPESENSE_API_KEY", ""),
            collection_name=os.getenv("TYPESENSE_COLLECTION", "products"),
            products_api_url=os.getenv("PRODUCTS_API_URL", DEFAULT_PRODUCTS_API_URL),
            page_size=int(os.getenv("PRODUCTS_PAGE_SIZE", "100")),
            log_dir=Path(os.getenv("LOG_DIR", "logs")),
        )


class IndexerOptions(BaseModel):
    """Run options exposed on the command line."""

    pages: int = Field(default=0, ge=0)  # 0 = unbounded
    start_page: int = Field(default=1, ge=1)
    batch_size: int = Field(default=50, ge=1, le=250)
    resume: bool = False
    checkpoint_interval: int = Field(default=25, ge=1)
    debug_errors: bool = False
    stop_on_errors: bool = False
    max_consecutive_errors: int = Field(default=10, ge=1)
    dry_run: bool = False
    validate_upsert: bool = False

    def snapshot(self) -> Dict[str, Any]:
        return self.model_dump()
