"""
環境変数からの設定読み込み
"""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

from dotenv import load_dotenv

# .env ファイルから環境変数を読み込み（ローカル開発時）
package_dir = Path(__file__).parent
env_path = package_dir.parent / ".env"
if env_path.exists():
    load_dotenv(dotenv_path=env_path)


DEFAULT_MODEL_ID = "anthropic.claude-3-haiku-20240307-v1:0"
DEFAULT_ALLOWED_ORIGINS = "http://localhost:3000,http://127.0.0.1:3000"


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None or value.strip() == "":
        return default
    return int(value)


def _env_bool(name: str) -> bool:
    return os.environ.get(name, "").lower() == "true"


@dataclass
class Settings:
    """アプリケーション設定"""
    table_name: str = "journal_insights"
    model_id: str = DEFAULT_MODEL_ID
    aws_region: str = "us-east-1"
    bedrock_timeout_seconds: int = 30
    cache_ttl_hours: int = 168  # 7 days
    cache_stale_hours: int = 24
    min_entries: int = 1
    max_entries: int = 20
    max_content_length: int = 500
    log_level: str = "INFO"
    allowed_origins: List[str] = field(default_factory=list)
    cognito_user_pool_id: str = ""
    cognito_client_id: str = ""
    allow_dev_auth_bypass: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        """
        環境変数から設定を生成

        Returns:
            Settings インスタンス
        """
        origins = os.environ.get("ALLOWED_ORIGINS", DEFAULT_ALLOWED_ORIGINS)
        return cls(
            table_name=os.environ.get("INSIGHTS_TABLE_NAME", "journal_insights"),
            model_id=os.environ.get("BEDROCK_MODEL_ID", DEFAULT_MODEL_ID),
            aws_region=os.environ.get("AWS_REGION", "us-east-1"),
            bedrock_timeout_seconds=_env_int("BEDROCK_TIMEOUT_SECONDS", 30),
            cache_ttl_hours=_env_int("CACHE_TTL_HOURS", 168),
            cache_stale_hours=_env_int("CACHE_STALE_HOURS", 24),
            max_entries=_env_int("MAX_ENTRIES", 20),
            max_content_length=_env_int("MAX_CONTENT_LENGTH", 500),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
            allowed_origins=[o.strip() for o in origins.split(",") if o.strip()],
            cognito_user_pool_id=os.environ.get("COGNITO_USER_POOL_ID", ""),
            cognito_client_id=os.environ.get("COGNITO_CLIENT_ID", ""),
            allow_dev_auth_bypass=_env_bool("ALLOW_DEV_AUTH_BYPASS"),
        )
