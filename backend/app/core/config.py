import os
from dataclasses import dataclass
from typing import Optional


def _env_bool(key: str, default: bool) -> bool:
    raw = os.environ.get(key)
    if raw is None:
        return default
    lowered = raw.strip().lower()
    return lowered in {"1", "true", "yes", "y", "on"}


def _env_int(key: str, default: int) -> int:
    raw = (os.environ.get(key) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(key: str, default: float) -> float:
    raw = (os.environ.get(key) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


# === 编辑流程业务规则 ===
# 中文注释: 评审人数下限、评分区间等规则统一放在这里，状态机代码只读取这些常量。
MIN_REVIEWERS = 2
RATING_MIN = 1
RATING_MAX = 5
REVIEW_PERIOD_DAYS = 14
REGISTRAR_TIMEOUT_SECONDS = 30.0
STORAGE_TIMEOUT_SECONDS = 30.0
BULK_RETRY_CONCURRENCY = 4
STALE_DEPOSIT_MINUTES = 15
CAS_MAX_ATTEMPTS = 3
MANUSCRIPT_CODE_PREFIX = "JF"


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
        is_staging = env == "staging"

        supabase_url = (os.environ.get("SUPABASE_URL") or "").strip()
        supabase_key = (os.environ.get("SUPABASE_SERVICE_ROLE_KEY") or "").strip()

        return AppConfig(
            env=env,
            is_staging=is_staging,
            supabase_url=supabase_url,
            supabase_key=supabase_key
        )

# Global Config Instance
app_config = AppConfig.from_env()


@dataclass(frozen=True)
class WorkflowConfig:
    """
    稿件流转引擎配置（从环境变量读取）

    中文注释:
    1) 所有“隐式规则”（至少 2 位审稿人、评分 1-5 等）都以具名配置暴露，便于测试与覆盖。
    2) 缺省值与常量保持一致；非法取值回退到缺省值而不是报错。
    """

    min_reviewers: int = MIN_REVIEWERS
    rating_min: int = RATING_MIN
    rating_max: int = RATING_MAX
    review_period_days: int = REVIEW_PERIOD_DAYS
    registrar_timeout_seconds: float = REGISTRAR_TIMEOUT_SECONDS
    storage_timeout_seconds: float = STORAGE_TIMEOUT_SECONDS
    bulk_retry_concurrency: int = BULK_RETRY_CONCURRENCY
    stale_deposit_minutes: int = STALE_DEPOSIT_MINUTES
    cas_max_attempts: int = CAS_MAX_ATTEMPTS
    manuscript_code_prefix: str = MANUSCRIPT_CODE_PREFIX
    public_base_url: str = ""
    storage_bucket: str = "manuscripts"

    @staticmethod
    def from_env() -> "WorkflowConfig":
        min_reviewers = max(1, _env_int("MIN_REVIEWERS", MIN_REVIEWERS))
        concurrency = max(1, _env_int("BULK_RETRY_CONCURRENCY", BULK_RETRY_CONCURRENCY))
        prefix = (os.environ.get("MANUSCRIPT_CODE_PREFIX") or MANUSCRIPT_CODE_PREFIX).strip().upper()
        public_base_url = (
            os.environ.get("PUBLIC_BASE_URL") or os.environ.get("FRONTEND_ORIGIN") or ""
        ).strip().rstrip("/")

        return WorkflowConfig(
            min_reviewers=min_reviewers,
            review_period_days=max(1, _env_int("REVIEW_PERIOD_DAYS", REVIEW_PERIOD_DAYS)),
            registrar_timeout_seconds=_env_float("REGISTRAR_TIMEOUT_SECONDS", REGISTRAR_TIMEOUT_SECONDS),
            storage_timeout_seconds=_env_float("STORAGE_TIMEOUT_SECONDS", STORAGE_TIMEOUT_SECONDS),
            bulk_retry_concurrency=concurrency,
            stale_deposit_minutes=max(1, _env_int("STALE_DEPOSIT_MINUTES", STALE_DEPOSIT_MINUTES)),
            cas_max_attempts=max(1, _env_int("CAS_MAX_ATTEMPTS", CAS_MAX_ATTEMPTS)),
            manuscript_code_prefix=prefix or MANUSCRIPT_CODE_PREFIX,
            public_base_url=public_base_url,
            storage_bucket=(os.environ.get("STORAGE_BUCKET") or "manuscripts").strip(),
        )


@dataclass(frozen=True)
class CrossrefConfig:
    """
    Crossref DOI 注册配置
    """

    depositor_email: str
    depositor_password: str
    doi_prefix: str
    api_url: str
    journal_title: str
    journal_issn: Optional[str]

    @staticmethod
    def from_env() -> Optional["CrossrefConfig"]:
        depositor_email = (os.environ.get("CROSSREF_DEPOSITOR_EMAIL") or "").strip()
        if not depositor_email:
            # 允许为空，此时 DOI 注册会以失败记录（可手动指定 DOI）
            return None

        depositor_password = (
            os.environ.get("CROSSREF_DEPOSITOR_PASSWORD") or ""
        ).strip()
        doi_prefix = (os.environ.get("CROSSREF_DOI_PREFIX") or "10.12345").strip()
        api_url = (
            os.environ.get("CROSSREF_API_URL")
            or "https://test.crossref.org/servlet/deposit"
        ).strip()
        journal_title = (
            os.environ.get("JOURNAL_TITLE") or "JournalFlow Journal"
        ).strip()
        journal_issn = (os.environ.get("JOURNAL_ISSN") or "").strip() or None

        return CrossrefConfig(
            depositor_email=depositor_email,
            depositor_password=depositor_password,
            doi_prefix=doi_prefix,
            api_url=api_url,
            journal_title=journal_title,
            journal_issn=journal_issn,
        )


@dataclass(frozen=True)
class SentryConfig:
    enabled: bool
    dsn: str
    environment: str
    traces_sample_rate: float

    @staticmethod
    def from_env() -> "SentryConfig":
        dsn = (os.environ.get("SENTRY_DSN") or "").strip()
        return SentryConfig(
            enabled=_env_bool("SENTRY_ENABLED", bool(dsn)),
            dsn=dsn,
            environment=(os.environ.get("SENTRY_ENVIRONMENT") or app_config.env).strip(),
            traces_sample_rate=_env_float("SENTRY_TRACES_SAMPLE_RATE", 0.0),
        )
