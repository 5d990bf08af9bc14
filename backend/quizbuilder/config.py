"""Application settings and validation."""

import os
from pathlib import Path

BASE = Path(__file__).resolve().parent.parent


class Settings:
    ENV: str
    DATABASE_URL: str
    JWT_SECRET: str
    JWT_ALGORITHM: str
    JWT_AUDIENCE: str
    ALLOW_INSECURE_JWT: bool
    ALLOW_DEV_CORS: bool
    LOG_LEVEL: str
    ATTEMPT_RATE_LIMIT_PER_MIN: int
    ATTEMPT_RATE_LIMIT_WINDOW_SECONDS: int

    def __init__(self):
        self.ENV = os.getenv("ENV", "dev").lower()
        self.DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{BASE / 'app.db'}")
        self.JWT_SECRET = os.getenv("JWT_SECRET", "change_me_for_prod")
        self.JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
        # Tokens from hosted identity providers usually carry `aud`; empty disables the check.
        self.JWT_AUDIENCE = os.getenv("JWT_AUDIENCE", "").strip()
        self.ALLOW_INSECURE_JWT = os.getenv("ALLOW_INSECURE_JWT", "false").lower() == "true"
        self.ALLOW_DEV_CORS = os.getenv("ALLOW_DEV_CORS", "true").lower() == "true"
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
        self.ATTEMPT_RATE_LIMIT_PER_MIN = int(os.getenv("ATTEMPT_RATE_LIMIT_PER_MIN", "30"))
        self.ATTEMPT_RATE_LIMIT_WINDOW_SECONDS = int(os.getenv("ATTEMPT_RATE_LIMIT_WINDOW_SECONDS", "60"))
        self._validate()

    def _validate(self):
        if self.ENV != "dev" and not self.ALLOW_INSECURE_JWT and self.JWT_SECRET == "change_me_for_prod":
            raise RuntimeError("JWT_SECRET must be set to a non-default value in non-dev environments")
        if self.ATTEMPT_RATE_LIMIT_PER_MIN < 1 or self.ATTEMPT_RATE_LIMIT_WINDOW_SECONDS < 1:
            raise RuntimeError("attempt rate limit settings must be positive integers")


settings = Settings()
