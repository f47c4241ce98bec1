"""
Configuration for Roomy Matching Service
========================================
Supports local development and cloud production deployment.

Environment Variables:
  ROOMY_ENV=local|production
  DUCKDB_PATH=/path/to/roomy.duckdb
  ROOMMATE_TOP_N=10
  DORM_TOP_N=3
  CHAT_HISTORY_LIMIT=20
  SESSION_TTL_SECONDS=86400
  CHAT_RATE_LIMIT_RPM=10
  CORS_ORIGINS=https://roomy.app,https://www.roomy.app
"""

import os
from pathlib import Path
from typing import List, Optional
from dataclasses import dataclass, field
from dotenv import load_dotenv

# Load environment variables immediately
load_dotenv()

# Dev servers allowed by CORS in local mode
LOCAL_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:5173",
    "http://127.0.0.1:3000",
]


@dataclass
class Config:
    """Application configuration loaded from environment variables"""

    # === REQUIRED ===
    duckdb_path: str

    # === RANKING ===
    roommate_top_n: int = 10   # Roommate matching page
    dorm_top_n: int = 3        # Dorm suggestions inside a chat reply

    # === CHAT ===
    max_message_length: int = 500
    chat_history_limit: int = 20         # 10 turns (user + assistant)
    session_ttl_seconds: int = 86400     # 0 disables expiry
    chat_rate_limit_rpm: int = 10

    # === PREFERENCE LEARNING ===
    confidence_step: int = 5             # Per learned preference

    # === HTTP ===
    cors_origins: List[str] = field(default_factory=list)

    env: str = "local"

    @classmethod
    def load(cls) -> "Config":
        """Load configuration from environment variables"""

        env = os.getenv("ROOMY_ENV", "local").lower()
        base_dir = Path(__file__).parent.parent

        tuning = dict(
            roommate_top_n=int(os.getenv("ROOMMATE_TOP_N", "10")),
            dorm_top_n=int(os.getenv("DORM_TOP_N", "3")),
            max_message_length=int(os.getenv("MAX_MESSAGE_LENGTH", "500")),
            chat_history_limit=int(os.getenv("CHAT_HISTORY_LIMIT", "20")),
            session_ttl_seconds=int(os.getenv("SESSION_TTL_SECONDS", "86400")),
            chat_rate_limit_rpm=int(os.getenv("CHAT_RATE_LIMIT_RPM", "10")),
        )

        cors_origins = [o.strip() for o in os.getenv("CORS_ORIGINS", "").split(",") if o.strip()]

        if env == "local":
            return cls(
                duckdb_path=os.getenv("DUCKDB_PATH", str(base_dir / "data" / "roomy.duckdb")),
                env=env,
                cors_origins=cors_origins + LOCAL_ORIGINS,
                **tuning,
            )
        else:
            # Production - require an explicit database location
            duckdb_path = os.getenv("DUCKDB_PATH")
            if not duckdb_path:
                raise ValueError("DUCKDB_PATH environment variable is required in production")

            return cls(
                duckdb_path=duckdb_path.strip(),
                env=env,
                cors_origins=cors_origins,
                **tuning,
            )


# Global config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global configuration instance"""
    global _config
    if _config is None:
        # Load .env without overriding existing environment variables
        load_dotenv(override=False)
        _config = Config.load()
    return _config


def reload_config() -> Config:
    """Force reload configuration"""
    global _config
    _config = Config.load()
    return _config
