"""Environment-driven configuration for the sheet record store."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from grid_backend import GspreadGridBackend, create_gspread_client
from sheet_store import SheetStore, start_metrics_server

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class SheetStoreConfig:
    """Settings for one sheet-backed store."""

    sheet_id: Optional[str] = None
    sheet_name: str = "Sheet1"
    row_head: int = 1
    description: Optional[str] = None

    service_account_json: Optional[str] = None
    service_account_file: Optional[str] = None

    retry_attempts: int = 3
    retry_multiplier: float = 1.0
    retry_max_wait: float = 10.0
    rate_tokens: int = 60
    rate_interval: float = 60.0

    include_inactive_default: bool = False
    log_level: str = "INFO"
    metrics_port: Optional[int] = None

    @classmethod
    def from_env(cls) -> SheetStoreConfig:
        """Build the configuration from the environment (and ``.env``)."""
        load_dotenv()

        worksheet_env = os.getenv("GOOGLE_SHEET_WORKSHEET")
        if worksheet_env is not None:
            worksheet_env = worksheet_env.strip() or None

        metrics_port_env = os.getenv("METRICS_PORT")

        return cls(
            sheet_id=os.getenv("GOOGLE_SHEET_ID"),
            sheet_name=worksheet_env or "Sheet1",
            row_head=int(os.getenv("SHEET_HEADER_ROW", "1")),
            description=os.getenv("SHEET_DESCRIPTION"),
            service_account_json=os.getenv("GOOGLE_SERVICE_ACCOUNT_JSON"),
            service_account_file=os.getenv("GOOGLE_SERVICE_ACCOUNT_FILE"),
            retry_attempts=int(os.getenv("GOOGLE_API_RETRY_ATTEMPTS", "3")),
            retry_multiplier=float(os.getenv("GOOGLE_API_RETRY_BACKOFF_MULTIPLIER", "1")),
            retry_max_wait=float(os.getenv("GOOGLE_API_RETRY_MAX_WAIT_SECONDS", "10")),
            rate_tokens=int(os.getenv("GOOGLE_API_RATE_TOKENS", "60")),
            rate_interval=float(os.getenv("GOOGLE_API_RATE_INTERVAL_SECONDS", "60")),
            include_inactive_default=_env_flag("SHEET_INCLUDE_INACTIVE"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            metrics_port=int(metrics_port_env) if metrics_port_env else None,
        )

    def validate(self) -> None:
        if not self.sheet_id:
            raise ValueError("GOOGLE_SHEET_ID is required to open the spreadsheet.")
        if not self.sheet_name or not self.sheet_name.strip():
            raise ValueError("Worksheet name must not be empty.")
        if self.row_head < 1:
            raise ValueError(f"SHEET_HEADER_ROW must be 1 or greater, got {self.row_head}.")
        if not (self.service_account_json or self.service_account_file):
            raise ValueError(
                "Google Sheets access requires GOOGLE_SERVICE_ACCOUNT_JSON or GOOGLE_SERVICE_ACCOUNT_FILE."
            )
        if self.service_account_file and not self.service_account_json:
            if not os.path.exists(self.service_account_file):
                raise ValueError(f"Service account file not found: {self.service_account_file}")
        if self.retry_attempts < 1:
            raise ValueError("GOOGLE_API_RETRY_ATTEMPTS must be at least 1.")
        if self.rate_tokens < 1 or self.rate_interval <= 0:
            raise ValueError("GOOGLE_API_RATE_TOKENS and GOOGLE_API_RATE_INTERVAL_SECONDS must be positive.")


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)


def build_store(config: Optional[SheetStoreConfig] = None, client=None) -> SheetStore:
    """Validated configuration -> ready :class:`SheetStore` over gspread."""
    config = config or SheetStoreConfig.from_env()
    config.validate()

    if client is None:
        client = create_gspread_client(config.service_account_json, config.service_account_file)
    backend = GspreadGridBackend(
        config.sheet_id,
        client,
        retry_attempts=config.retry_attempts,
        retry_multiplier=config.retry_multiplier,
        retry_max_wait=config.retry_max_wait,
        rate_tokens=config.rate_tokens,
        rate_interval=config.rate_interval,
    )
    if config.metrics_port:
        start_metrics_server(config.metrics_port)

    logger.info("Sheet store ready for %s / %s (header row %s)", config.sheet_id, config.sheet_name, config.row_head)
    return SheetStore(
        backend,
        config.sheet_name,
        config.row_head,
        spreadsheet_id=config.sheet_id,
        description=config.description,
    )
