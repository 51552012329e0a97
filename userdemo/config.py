"""Application configuration read from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping


class ConfigError(ValueError):
    """A required setting is missing or invalid."""


def _environ(environ: Mapping[str, str] | None) -> Mapping[str, str]:
    return os.environ if environ is None else environ


@dataclass(frozen=True)
class DatabaseConfig:
    """Connection settings for the PostgreSQL database."""

    pg_url: str = ""

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> DatabaseConfig:
        return cls(pg_url=_environ(environ).get("PG_URL", ""))

    def validate(self) -> None:
        if not self.pg_url:
            raise ConfigError("required env variable 'PG_URL' not found")


@dataclass(frozen=True)
class ServerConfig:
    """Settings for the HTTP server."""

    server_addr: str = ""

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ServerConfig:
        return cls(server_addr=_environ(environ).get("SERVER_ADDR", ""))

    def validate(self) -> None:
        if not self.server_addr:
            raise ConfigError("required env variable 'SERVER_ADDR' not found")


@dataclass(frozen=True)
class AppConfig:
    """All settings the application needs."""

    database: DatabaseConfig
    server: ServerConfig

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> AppConfig:
        return cls(
            database=DatabaseConfig.from_env(environ),
            server=ServerConfig.from_env(environ),
        )

    def validate(self) -> None:
        self.database.validate()
        self.server.validate()