import argparse
import os
from typing import List, Optional
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    run_address: str = os.getenv("RUN_ADDRESS", "localhost:8080")
    database_uri: str = os.getenv("DATABASE_URI", "sqlite:///./loyalty.db")
    db_statement_timeout_ms: int = int(os.getenv("DB_STATEMENT_TIMEOUT_MS", "5000"))

    accrual_system_address: str = os.getenv("ACCRUAL_SYSTEM_ADDRESS", "http://localhost:8081")
    accrual_poll_interval: float = float(os.getenv("ACCRUAL_POLL_INTERVAL", "1.0"))
    accrual_timeout: float = float(os.getenv("ACCRUAL_TIMEOUT", "5.0"))

    token_issuer: str = os.getenv("TOKEN_ISSUER", "loyalty")
    token_secret: str = os.getenv("TOKEN_SECRET", "dev-secret-change")
    token_secret_file: str = os.getenv("TOKEN_SECRET_FILE", "")
    token_ttl_seconds: int = int(os.getenv("TOKEN_TTL_SECONDS", str(72 * 3600)))

    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    def load_secret(self) -> bytes:
        """Signing secret; the file, when configured, wins over the inline value."""
        if self.token_secret_file:
            with open(self.token_secret_file, "rb") as f:
                return f.read().strip()
        return self.token_secret.encode("utf-8")

    @property
    def listen_host_port(self) -> tuple[str, int]:
        host, _, port = self.run_address.rpartition(":")
        return host or "0.0.0.0", int(port)

# flag, field, environment variable, help
FLAGS = (
    ("-a", "run_address", "RUN_ADDRESS", "address to listen on"),
    ("-d", "database_uri", "DATABASE_URI", "database connection string"),
    ("-r", "accrual_system_address", "ACCRUAL_SYSTEM_ADDRESS", "accrual system address"),
    ("-s", "token_secret_file", "TOKEN_SECRET_FILE", "path to the file holding the token secret"),
)

def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser("loyalty-service")
    for flag, field, _, help_text in FLAGS:
        p.add_argument(flag, dest=field, default=None, help=help_text)
    return p

def with_flags(base: Settings, argv: Optional[List[str]] = None) -> Settings:
    """Apply command-line overrides; an environment variable, when set, still wins."""
    args = build_parser().parse_args(argv)
    updates = {}
    for _, field, env_name, _ in FLAGS:
        value = getattr(args, field)
        if value is not None and not os.getenv(env_name):
            updates[field] = value
    return base.model_copy(update=updates)

settings = Settings()
