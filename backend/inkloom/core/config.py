from functools import lru_cache
from pathlib import Path
from typing import Optional
import sys

from pydantic import AliasChoices, Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import make_url


class Settings(BaseSettings):
    """应用全局配置，所有可调参数集中于此，统一加载自环境变量。"""

    # -------------------- 基础应用配置 --------------------
    app_name: str = Field(default="Inkloom Chapter Engine API", description="FastAPI 文档标题")
    environment: str = Field(default="development", description="当前环境标识")
    debug: bool = Field(default=False, description="是否开启调试模式（开启后输出SQL日志）")
    logging_level: str = Field(
        default="INFO",
        env="LOGGING_LEVEL",
        description="应用日志级别",
    )

    # -------------------- 数据库配置 --------------------
    database_url: Optional[str] = Field(
        default=None,
        env="DATABASE_URL",
        description="完整的数据库连接串，未填写时使用 storage/inkloom.db",
    )

    # -------------------- LLM 相关配置 --------------------
    openai_api_key: Optional[str] = Field(default=None, env="OPENAI_API_KEY", description="默认的 LLM API Key")
    openai_base_url: Optional[HttpUrl] = Field(
        default=None,
        env="OPENAI_API_BASE_URL",
        validation_alias=AliasChoices("OPENAI_API_BASE_URL", "OPENAI_BASE_URL"),
        description="LLM API Base URL",
    )
    openai_model_name: str = Field(default="gpt-4o-mini", env="OPENAI_MODEL_NAME", description="默认 LLM 模型名称")
    llm_max_concurrent: int = Field(
        default=3,
        ge=1,
        le=10,
        env="LLM_MAX_CONCURRENT",
        description="LLM 最大并发请求数（避免 API 限流）",
    )
    llm_temp_writing: float = Field(
        default=0.75,
        ge=0.0,
        le=2.0,
        env="LLM_TEMP_WRITING",
        description="场景正文生成的temperature值（创造性高）",
    )
    llm_temp_summary: float = Field(
        default=0.15,
        ge=0.0,
        le=2.0,
        env="LLM_TEMP_SUMMARY",
        description="摘要生成的temperature值（精确性）",
    )
    llm_scene_timeout: float = Field(
        default=180.0,
        gt=0,
        env="LLM_SCENE_TIMEOUT",
        description="单个场景生成的超时时间（秒）",
    )
    llm_summary_timeout: float = Field(
        default=180.0,
        gt=0,
        env="LLM_SUMMARY_TIMEOUT",
        description="摘要生成的超时时间（秒）",
    )

    # -------------------- 场景拆分配置 --------------------
    scene_words_per_scene: int = Field(
        default=800,
        ge=50,
        env="SCENE_WORDS_PER_SCENE",
        description="每个节拍对应的基准字数",
    )
    scene_min_words: int = Field(default=800, ge=1, env="SCENE_MIN_WORDS", description="单场景目标字数下限")
    scene_max_words: int = Field(default=3000, ge=1, env="SCENE_MAX_WORDS", description="单场景目标字数上限")
    scene_word_tolerance: float = Field(
        default=0.15,
        ge=0.0,
        le=1.0,
        env="SCENE_WORD_TOLERANCE",
        description="字数校验允许的偏差比例（0.15 即 85%~115%）",
    )
    scene_max_complexity: int = Field(default=3, ge=1, env="SCENE_MAX_COMPLEXITY", description="单场景最大复杂度")
    scene_max_beats: int = Field(default=2, ge=1, env="SCENE_MAX_BEATS", description="单场景最多包含的节拍数")

    # -------------------- 执行缓存配置 --------------------
    cache_min_hit_quality: int = Field(
        default=70,
        ge=0,
        le=100,
        env="CACHE_MIN_HIT_QUALITY",
        description="缓存命中所需的最低质量分",
    )
    cache_low_quality_threshold: int = Field(
        default=50,
        ge=0,
        le=100,
        env="CACHE_LOW_QUALITY_THRESHOLD",
        description="低于此质量分且从未复用的条目可被清理",
    )
    cache_retention_days: int = Field(
        default=7,
        ge=0,
        env="CACHE_RETENTION_DAYS",
        description="低质量条目的保留天数",
    )
    cache_temperature_bin: float = Field(
        default=0.1,
        gt=0,
        env="CACHE_TEMPERATURE_BIN",
        description="签名计算时temperature的分桶粒度",
    )
    cache_max_tokens_bin: int = Field(
        default=512,
        ge=1,
        env="CACHE_MAX_TOKENS_BIN",
        description="签名计算时max_tokens的分桶粒度",
    )
    cache_context_tail_chars: int = Field(
        default=500,
        ge=0,
        env="CACHE_CONTEXT_TAIL_CHARS",
        description="签名中纳入的前文尾部字符数",
    )

    # -------------------- 质量评分配置 --------------------
    quality_base: int = Field(default=100, env="QUALITY_BASE", description="质量分基准值")
    quality_error_penalty: int = Field(default=20, ge=0, env="QUALITY_ERROR_PENALTY", description="每个错误扣分")
    quality_warning_penalty: int = Field(default=5, ge=0, env="QUALITY_WARNING_PENALTY", description="每个警告扣分")
    quality_pass_bonus: int = Field(default=10, ge=0, env="QUALITY_PASS_BONUS", description="规则全部通过的加分")
    quality_major_deviation: float = Field(default=0.3, ge=0, env="QUALITY_MAJOR_DEVIATION", description="严重字数偏差阈值")
    quality_major_deviation_penalty: int = Field(
        default=20, ge=0, env="QUALITY_MAJOR_DEVIATION_PENALTY", description="严重字数偏差扣分"
    )
    quality_minor_deviation: float = Field(default=0.2, ge=0, env="QUALITY_MINOR_DEVIATION", description="轻微字数偏差阈值")
    quality_minor_deviation_penalty: int = Field(
        default=10, ge=0, env="QUALITY_MINOR_DEVIATION_PENALTY", description="轻微字数偏差扣分"
    )

    # -------------------- 摘要流水线配置 --------------------
    summary_workers: int = Field(default=1, ge=1, le=8, env="SUMMARY_WORKERS", description="摘要队列的工作协程数量")
    summary_max_attempts: int = Field(default=3, ge=1, env="SUMMARY_MAX_ATTEMPTS", description="摘要任务最大尝试次数")
    summary_retry_initial_delay: float = Field(
        default=1.0, ge=0, env="SUMMARY_RETRY_INITIAL_DELAY", description="首次重试等待时间（秒）"
    )
    summary_retry_max_delay: float = Field(
        default=10.0, ge=0, env="SUMMARY_RETRY_MAX_DELAY", description="重试等待时间上限（秒）"
    )
    summary_retry_multiplier: float = Field(
        default=2.0, ge=1.0, env="SUMMARY_RETRY_MULTIPLIER", description="重试等待时间的指数倍率"
    )

    model_config = SettingsConfigDict(
        env_file=(".env", "backend/.env"),
        env_file_encoding="utf-8",
        extra="ignore"
    )

    @field_validator("database_url", mode="before")
    @classmethod
    def _normalize_database_url(cls, value: Optional[str]) -> Optional[str]:
        """当环境变量中提供 DATABASE_URL 时，去除首尾空白后原样返回。"""
        return value.strip() if isinstance(value, str) and value.strip() else None

    @field_validator("logging_level", mode="before")
    @classmethod
    def _normalize_logging_level(cls, value: Optional[str]) -> str:
        """规范日志级别配置。"""
        candidate = (value or "INFO").strip().upper()
        valid_levels = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG", "NOTSET"}
        if candidate not in valid_levels:
            raise ValueError("LOGGING_LEVEL 仅支持 CRITICAL/ERROR/WARNING/INFO/DEBUG/NOTSET")
        return candidate

    @property
    def sqlalchemy_database_uri(self) -> str:
        """生成 SQLAlchemy 兼容的异步连接串，未配置时固定使用 storage/inkloom.db。"""
        if self.database_url:
            return make_url(self.database_url).render_as_string(hide_password=False)

        db_path = (self.storage_dir / "inkloom.db").resolve()
        return f"sqlite+aiosqlite:///{db_path}"

    @property
    def storage_dir(self) -> Path:
        """存储目录根路径"""
        if getattr(sys, 'frozen', False):
            return Path(sys.executable).parent / "storage"
        return Path(__file__).resolve().parents[2] / "storage"


def _get_config_file_path() -> Path:
    """获取 config.json 配置文件路径（与数据库同在 storage 目录）"""
    if getattr(sys, 'frozen', False):
        work_dir = Path(sys.executable).parent
    else:
        work_dir = Path(__file__).resolve().parents[2]

    return work_dir / 'storage' / 'config.json'


def _load_json_config() -> dict:
    """加载 config.json 中的配置，文件损坏时忽略并使用环境变量配置"""
    import json
    config_file = _get_config_file_path()
    if config_file.exists():
        try:
            with open(config_file, 'r', encoding='utf-8') as f:
                return json.load(f)
        except (OSError, ValueError):
            return {}
    return {}


# 允许在运行时通过 config.json 覆盖的运维参数
JSON_OVERRIDABLE_KEYS = ("llm_max_concurrent", "cache_min_hit_quality", "summary_max_attempts")


@lru_cache
def get_settings() -> Settings:
    """使用 LRU 缓存确保配置只初始化一次，减少 IO 与解析开销。

    启动时会从 config.json 加载运维人员保存的配置并覆盖默认值。
    """
    instance = Settings()

    json_config = _load_json_config()
    for key in JSON_OVERRIDABLE_KEYS:
        if key in json_config:
            setattr(instance, key, json_config[key])

    return instance


settings = get_settings()
