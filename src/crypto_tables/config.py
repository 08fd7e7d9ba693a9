"""Settings read from the environment (``CRYPTO_TABLES_*``) or a .env file."""

from __future__ import annotations

import logging
from typing import Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from crypto_tables.cipher import CryptoAlgorithm
from crypto_tables.connection import CryptoConnection
from crypto_tables.engine import SQLiteEngine

logger = logging.getLogger(__name__)


class CryptoTablesSettings(BaseSettings):
    database: str = Field(default="crypto_tables.db", description="SQLite database path or :memory:.")
    algorithm: CryptoAlgorithm = Field(default=CryptoAlgorithm.AES_256)
    key_hex: Optional[SecretStr] = Field(default=None, description="Default encryption key, hex encoded.")
    enforce_foreign_keys: bool = Field(default=False, description="Turn on SQLite foreign key enforcement.")
    log_level: str = Field(default="WARNING")

    model_config = SettingsConfigDict(
        env_prefix="CRYPTO_TABLES_", env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    @field_validator("key_hex")
    @classmethod
    def _check_hex(cls, value: Optional[SecretStr]) -> Optional[SecretStr]:
        if value is not None:
            bytes.fromhex(value.get_secret_value())
        return value

    @property
    def key(self) -> bytes | None:
        if self.key_hex is None:
            return None
        return bytes.fromhex(self.key_hex.get_secret_value())


def connect(settings: CryptoTablesSettings | None = None) -> CryptoConnection:
    """Open a connection from settings and install the configured default key."""
    if settings is None:
        settings = CryptoTablesSettings()
    logging.getLogger("crypto_tables").setLevel(settings.log_level.upper())

    engine = SQLiteEngine(settings.database, foreign_keys=settings.enforce_foreign_keys)
    connection = CryptoConnection(engine, algorithm=settings.algorithm)
    if settings.key is not None:
        connection.set_encryption_key(settings.key)
    logger.debug("Connected to %s using %s", settings.database, settings.algorithm.value)
    return connection
