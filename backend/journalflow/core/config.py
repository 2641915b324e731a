import os
from dataclasses import dataclass, field
from typing import Optional


def _env_bool(key: str, default: bool) -> bool:
    raw = os.environ.get(key)
    if raw is None:
        return default
    lowered = raw.strip().lower()
    return lowered in {"1", "true", "yes", "y", "on"}


def _env_int(key: str, default: int, *, min_value: int = 0) -> int:
    raw = (os.environ.get(key) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return max(min_value, value)


def _env_float(key: str, default: float) -> float:
    raw = (os.environ.get(key) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class AppConfig:
    """
    Application Environment Config
    """
    env: str  # 'development', 'staging', 'production'
    is_staging: bool
    supabase_url: str
    supabase_key: str

    @staticmethod
    def from_env() -> "AppConfig":
        env = (os.environ.get("APP_ENV") or "development").strip().lower()
        supabase_url = (os.environ.get("SUPABASE_URL") or "").strip()
        supabase_key = (os.environ.get("SUPABASE_SERVICE_ROLE_KEY") or "").strip()

        return AppConfig(
            env=env,
            is_staging=env == "staging",
            supabase_url=supabase_url,
            supabase_key=supabase_key,
        )


# Global Config Instance
app_config = AppConfig.from_env()


@dataclass(frozen=True)
class WorkflowConfig:
    """
    编辑工作流配置（SLA / 稿件编号 / 并发）

    中文注释:
    1) SLA 天数按状态配置，终态（DESK_REJECT/REJECTED/PUBLISHED）不计 SLA。
    2) 审稿期限（reviewDeadlineDays）不在这里：它属于 ReviewSettings，由编辑部在后台维护。
    3) 非法的环境变量值一律回落默认值，不在 import 阶段抛异常。
    """

    code_prefix: str = "HCQS"
    sla_days: dict[str, int] = field(
        default_factory=lambda: {
            "NEW": 7,
            "UNDER_REVIEW": 21,
            "REVISION": 14,
            "ACCEPTED": 7,
            "IN_PRODUCTION": 14,
        }
    )
    publication_days: int = 7
    urgent_window_days: int = 3
    reviewer_max_workload: int = 5
    lock_timeout_seconds: float = 5.0

    @staticmethod
    def from_env() -> "WorkflowConfig":
        code_prefix = (os.environ.get("JOURNAL_CODE_PREFIX") or "HCQS").strip().upper() or "HCQS"
        sla_days = {
            "NEW": _env_int("SLA_NEW_DAYS", 7),
            "UNDER_REVIEW": _env_int("SLA_UNDER_REVIEW_DAYS", 21),
            "REVISION": _env_int("SLA_REVISION_DAYS", 14),
            "ACCEPTED": _env_int("SLA_ACCEPTED_DAYS", 7),
            "IN_PRODUCTION": _env_int("SLA_IN_PRODUCTION_DAYS", 14),
        }
        return WorkflowConfig(
            code_prefix=code_prefix,
            sla_days=sla_days,
            publication_days=_env_int("SLA_PUBLICATION_DAYS", 7),
            urgent_window_days=_env_int("DEADLINE_URGENT_DAYS", 3),
            reviewer_max_workload=_env_int("REVIEWER_MAX_WORKLOAD", 5, min_value=1),
            lock_timeout_seconds=_env_float("SUBMISSION_LOCK_TIMEOUT_SECONDS", 5.0),
        )

    def sla_for(self, status: str) -> int:
        return int(self.sla_days.get(status, 0))


def get_admin_api_key() -> Optional[str]:
    """
    内部 Cron 接口鉴权 Key

    中文注释:
    - 仅用于 `/api/v1/internal/cron/*`（逾期扫描），避免暴露到公网用户接口。
    """

    raw = os.environ.get("ADMIN_API_KEY")
    return raw.strip() if raw else None


@dataclass(frozen=True)
class SentryConfig:
    """
    Sentry 配置（可选）

    中文注释:
    - 未配置 DSN 或显式关闭时，监控整体降级为“只写日志”。
    """

    enabled: bool
    dsn: Optional[str]
    environment: str
    traces_sample_rate: float

    @staticmethod
    def from_env() -> "SentryConfig":
        dsn = (os.environ.get("SENTRY_DSN") or "").strip() or None
        environment = (
            os.environ.get("SENTRY_ENVIRONMENT") or os.environ.get("APP_ENV") or "development"
        ).strip()
        return SentryConfig(
            enabled=_env_bool("SENTRY_ENABLED", bool(dsn)),
            dsn=dsn,
            environment=environment,
            traces_sample_rate=_env_float("SENTRY_TRACES_SAMPLE_RATE", 0.0),
        )
