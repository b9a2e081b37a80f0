"""配置管理模块。

支持从 .env、config.yaml 以及环境变量加载配置。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_COPILOT_ENDPOINT = "https://graph.microsoft.com/beta/copilot"


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("COPILOT_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
    ])

    seen: set[Path] = set()
    for path in candidates:
        if not path or path in seen:
            continue
        seen.add(path)
        try:
            if path.exists():
                data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
                if isinstance(data, dict):
                    return data
                warnings.warn(f"Config file {path} is not a mapping, ignored")
        except (OSError, yaml.YAMLError) as exc:
            warnings.warn(f"Failed to read config file {path}: {exc}")
    return {}


class Settings(BaseSettings):
    """配置设置（使用 Pydantic）。"""

    # ---- Copilot 端点 ----
    copilot_endpoint: str = Field(
        default=DEFAULT_COPILOT_ENDPOINT,
        description="Copilot chat API 基础URL，末尾的 / 会被去掉",
    )
    copilot_subscription_key: Optional[str] = Field(
        default=None,
        description="可选的 Ocp-Apim-Subscription-Key",
    )
    copilot_access_token: Optional[str] = Field(
        default=None,
        description="预先签发的 access token，供 StaticTokenProvider 使用",
    )
    time_zone: Optional[str] = Field(
        default=None,
        description="locationHint.timeZone，IANA 时区名；为空时自动解析本机时区",
    )

    http_timeout: float = Field(default=60.0, ge=1.0, description="HTTP 超时时间（秒）")
    log_dir: str = Field(default="logs", description="日志目录")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("copilot_endpoint")
    @classmethod
    def normalize_endpoint(cls, v: str) -> str:
        v = (v or "").strip().rstrip("/")
        return v or DEFAULT_COPILOT_ENDPOINT

    @field_validator("copilot_subscription_key", "copilot_access_token")
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None

    @field_validator("time_zone")
    @classmethod
    def validate_time_zone(cls, v: Optional[str]) -> Optional[str]:
        v = (v or "").strip()
        if not v:
            return None
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown time zone: {v!r}")
        return v

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            cls._config_source,
            file_secret_settings,
        )


settings = Settings()
