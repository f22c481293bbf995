import os
from functools import lru_cache
from typing import Literal, Optional

from pydantic import BaseModel, Field


class Settings(BaseModel):
    """Process-wide configuration, built once from the environment."""

    jwt_secret: str = "devsecret"
    jwt_algorithm: str = "HS256"
    jwt_expire_days: int = Field(7, ge=1)

    database_url: Optional[str] = None
    database_name: Optional[str] = None

    otp_length: int = Field(6, ge=4, le=10)
    otp_expire_minutes: int = Field(10, ge=1)
    otp_max_attempts: int = Field(5, ge=1)
    # bcrypt accepts 4..31
    otp_hash_rounds: int = Field(8, ge=4, le=31)

    email_backend: Literal["console", "smtp"] = "console"
    email_host: str = "smtp.gmail.com"
    email_port: int = 587
    email_user: str = ""
    email_pass: str = ""
    email_from: str = "noreply@organicbasket.in"
    email_use_tls: bool = True

    otp_send_limit: int = 5
    otp_verify_limit: int = 10
    rate_limit_window_minutes: int = 15

    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        env = {
            "jwt_secret": os.getenv("JWT_SECRET"),
            "jwt_expire_days": os.getenv("JWT_EXPIRE_DAYS"),
            "database_url": os.getenv("DATABASE_URL"),
            "database_name": os.getenv("DATABASE_NAME"),
            "otp_length": os.getenv("OTP_LENGTH"),
            "otp_expire_minutes": os.getenv("OTP_EXPIRE_MINUTES"),
            "otp_max_attempts": os.getenv("OTP_MAX_ATTEMPTS"),
            "otp_hash_rounds": os.getenv("OTP_HASH_ROUNDS"),
            "email_backend": os.getenv("EMAIL_BACKEND"),
            "email_host": os.getenv("EMAIL_HOST"),
            "email_port": os.getenv("EMAIL_PORT"),
            "email_user": os.getenv("EMAIL_USER"),
            "email_pass": os.getenv("EMAIL_PASS"),
            "email_from": os.getenv("EMAIL_FROM"),
            "email_use_tls": os.getenv("EMAIL_USE_TLS"),
            "otp_send_limit": os.getenv("OTP_SEND_LIMIT"),
            "otp_verify_limit": os.getenv("OTP_VERIFY_LIMIT"),
            "rate_limit_window_minutes": os.getenv("RATE_LIMIT_WINDOW_MINUTES"),
            "log_level": os.getenv("LOG_LEVEL"),
        }
        return cls(**{k: v for k, v in env.items() if v is not None})


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()
