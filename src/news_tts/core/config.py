"""
Configuration Management for news-tts.

This module provides centralized configuration handling with:
    - Default values (Defaults class)
    - Dataclass-based configuration objects per section
    - YAML file loading with environment variable overrides
    - Validation with meaningful error messages

Configuration Hierarchy (highest priority first):
    1. Environment variables (NEWS_TTS_PROVIDER_API_KEY, NEWS_TTS_REDIS_URL, ...)
    2. YAML config file (config/settings.yaml)
    3. Defaults class values

Example settings.yaml:
    provider:
      api_key: "..."
      model: eleven_multilingual_v2

    voices:
      tr:
        Ahmet: "pNInz6obpgDQGcFmaJgB"
        Elif: "EXAVITQu4vr4xnSDxMaL"

    rate_limit:
      max_concurrent: 5
      requests_per_second: 10

    resilience:
      synthesis:
        max_retries: 3
        base_delay_s: 2.0
        breaker:
          failure_ratio: 0.5
          min_throughput: 10

    storage:
      base_dir: ./storage
      audio_format: mp3

    cache:
      enabled: true
      redis_url: redis://localhost:6379/0

    merge:
      separator: separator
      intro: merged_haber_basi
      outro: merged_haber_sonu
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from news_tts.core.logging.levels import coerce_level


class ConfigValidationError(Exception):
    """Raised when a configuration value is out of bounds or of the wrong type."""
    pass


class Defaults:
    """
    Centralized default configuration values.

    Sections:
        - Provider: Synthesis API endpoint and voice settings
        - Rate limiting: Outbound provider call limits
        - Resilience: Retry and circuit breaker per call class
        - Batch: Total item concurrency
        - Storage: Local audio files
        - Remote: Object storage upload
        - Cache: Raw audio and metadata cache
        - Merge: ffmpeg and optional clips
        - Notifications: Webhook sink
        - Logging: Log level
    """

    # ─────────────────────────────────────────────────────────────────────────
    # Provider
    # ─────────────────────────────────────────────────────────────────────────
    PROVIDER_BASE_URL = "https://api.elevenlabs.io"
    PROVIDER_MODEL = "eleven_multilingual_v2"
    PROVIDER_TIMEOUT_S = 60.0
    PROVIDER_CONNECT_TIMEOUT_S = 10.0
    VOICE_STABILITY = 0.5
    VOICE_SIMILARITY = 0.75
    VOICE_STYLE = 0.5
    VOICE_SPEAKER_BOOST = True
    VOICE_SPEED = 1.0

    # ─────────────────────────────────────────────────────────────────────────
    # Rate limiting
    # ─────────────────────────────────────────────────────────────────────────
    RATE_LIMIT_MAX_CONCURRENT = 5       # Concurrency cap C (also bucket burst)
    RATE_LIMIT_PER_SECOND = 10.0        # Token refill rate R
    RATE_LIMIT_ACQUIRE_TIMEOUT_S = 30.0

    # ─────────────────────────────────────────────────────────────────────────
    # Resilience
    # ─────────────────────────────────────────────────────────────────────────
    SYNTHESIS_MAX_RETRIES = 3
    SYNTHESIS_BASE_DELAY_S = 2.0
    SYNTHESIS_JITTER = True
    BREAKER_FAILURE_RATIO = 0.5
    BREAKER_MIN_THROUGHPUT = 10
    BREAKER_SAMPLING_S = 30.0
    BREAKER_BREAK_S = 30.0
    STORAGE_MAX_RETRIES = 3
    STORAGE_BASE_DELAY_S = 5.0
    MERGE_MAX_RETRIES = 2
    MERGE_BASE_DELAY_S = 5.0

    # ─────────────────────────────────────────────────────────────────────────
    # Batch
    # ─────────────────────────────────────────────────────────────────────────
    BATCH_MAX_CONCURRENT = 20

    # ─────────────────────────────────────────────────────────────────────────
    # Storage
    # ─────────────────────────────────────────────────────────────────────────
    STORAGE_BASE_DIR = "./storage"
    STORAGE_AUDIO_FORMAT = "mp3"
    STORAGE_MERGED_SUBDIR = "merged"

    # ─────────────────────────────────────────────────────────────────────────
    # Remote object storage
    # ─────────────────────────────────────────────────────────────────────────
    REMOTE_ENABLED = False
    REMOTE_BASE_URL = "https://storage.googleapis.com"
    REMOTE_PREFIX = "audio"
    REMOTE_TIMEOUT_S = 60.0

    # ─────────────────────────────────────────────────────────────────────────
    # Cache
    # ─────────────────────────────────────────────────────────────────────────
    CACHE_ENABLED = False
    CACHE_BACKEND = "redis"             # redis | memory | none
    CACHE_REDIS_URL = "redis://localhost:6379/0"
    CACHE_AUDIO_TTL_S = 3600            # tts:<id> raw bytes (1 hour)
    CACHE_METADATA_TTL_S = 86400 * 7    # audio:<id> metadata (7 days)
    CACHE_MEMORY_MAX_ITEMS = 256

    # ─────────────────────────────────────────────────────────────────────────
    # Merge
    # ─────────────────────────────────────────────────────────────────────────
    MERGE_FFMPEG_PATH = "ffmpeg"
    MERGE_BITRATE_KBPS = 128
    MERGE_SEPARATOR = "separator"
    MERGE_INTRO = "merged_haber_basi"
    MERGE_OUTRO = "merged_haber_sonu"
    MERGE_SHUTDOWN_TIMEOUT_S = 30.0

    # ─────────────────────────────────────────────────────────────────────────
    # Notifications
    # ─────────────────────────────────────────────────────────────────────────
    NOTIFY_TIMEOUT_S = 10.0

    # ─────────────────────────────────────────────────────────────────────────
    # Logging
    # ─────────────────────────────────────────────────────────────────────────
    LOGGING_TEXT_PREVIEW_CHARS = 80
    LOGGING_LEVEL = 2                   # 1=MINIMAL, 2=NORMAL, 3=VERBOSE, 4=DEBUG


AUDIO_FORMATS = ("mp3", "m4a", "aac")


@dataclass
class ProviderConfig:
    """Speech-synthesis provider endpoint, credentials and default voice settings."""
    api_key: str = ""
    base_url: str = Defaults.PROVIDER_BASE_URL
    model: str = Defaults.PROVIDER_MODEL
    timeout_s: float = Defaults.PROVIDER_TIMEOUT_S
    connect_timeout_s: float = Defaults.PROVIDER_CONNECT_TIMEOUT_S
    stability: float = Defaults.VOICE_STABILITY
    similarity: float = Defaults.VOICE_SIMILARITY
    style: float = Defaults.VOICE_STYLE
    speaker_boost: bool = Defaults.VOICE_SPEAKER_BOOST
    speed: float = Defaults.VOICE_SPEED


@dataclass
class RateLimitConfig:
    """
    Outbound provider call limits.

    max_concurrent bounds simultaneous provider calls and is also the
    token bucket capacity; requests_per_second is the refill rate.
    """
    max_concurrent: int = Defaults.RATE_LIMIT_MAX_CONCURRENT
    requests_per_second: float = Defaults.RATE_LIMIT_PER_SECOND
    acquire_timeout_s: float = Defaults.RATE_LIMIT_ACQUIRE_TIMEOUT_S


@dataclass
class BreakerConfig:
    """Circuit breaker thresholds. Disabled breakers never short-circuit."""
    enabled: bool = True
    failure_ratio: float = Defaults.BREAKER_FAILURE_RATIO
    min_throughput: int = Defaults.BREAKER_MIN_THROUGHPUT
    sampling_s: float = Defaults.BREAKER_SAMPLING_S
    break_s: float = Defaults.BREAKER_BREAK_S


@dataclass
class RetryConfig:
    """Retry with exponential backoff: delay = base_delay_s * 2**attempt."""
    max_retries: int = Defaults.SYNTHESIS_MAX_RETRIES
    base_delay_s: float = Defaults.SYNTHESIS_BASE_DELAY_S
    jitter: bool = False
    breaker: BreakerConfig = field(default_factory=lambda: BreakerConfig(enabled=False))


def _synthesis_retry() -> RetryConfig:
    return RetryConfig(
        max_retries=Defaults.SYNTHESIS_MAX_RETRIES,
        base_delay_s=Defaults.SYNTHESIS_BASE_DELAY_S,
        jitter=Defaults.SYNTHESIS_JITTER,
        breaker=BreakerConfig(enabled=True),
    )


def _storage_retry() -> RetryConfig:
    return RetryConfig(
        max_retries=Defaults.STORAGE_MAX_RETRIES,
        base_delay_s=Defaults.STORAGE_BASE_DELAY_S,
    )


def _merge_retry() -> RetryConfig:
    return RetryConfig(
        max_retries=Defaults.MERGE_MAX_RETRIES,
        base_delay_s=Defaults.MERGE_BASE_DELAY_S,
    )


@dataclass
class ResilienceConfig:
    """Retry/breaker parameters per call class."""
    synthesis: RetryConfig = field(default_factory=_synthesis_retry)
    storage: RetryConfig = field(default_factory=_storage_retry)
    merge: RetryConfig = field(default_factory=_merge_retry)


@dataclass
class BatchConfig:
    """Bounds total in-flight item processing across a batch."""
    max_concurrent: int = Defaults.BATCH_MAX_CONCURRENT


@dataclass
class StorageConfig:
    """Local audio storage. Files are named speech_<id>.<format>."""
    base_dir: str = Defaults.STORAGE_BASE_DIR
    audio_format: str = Defaults.STORAGE_AUDIO_FORMAT
    merged_subdir: str = Defaults.STORAGE_MERGED_SUBDIR


@dataclass
class RemoteStorageConfig:
    """Remote object storage (GCS JSON API). Disabled unless a bucket is set."""
    enabled: bool = Defaults.REMOTE_ENABLED
    bucket: str = ""
    token: str = ""
    base_url: str = Defaults.REMOTE_BASE_URL
    prefix: str = Defaults.REMOTE_PREFIX
    timeout_s: float = Defaults.REMOTE_TIMEOUT_S


@dataclass
class CacheConfig:
    """Raw audio and metadata cache."""
    enabled: bool = Defaults.CACHE_ENABLED
    backend: str = Defaults.CACHE_BACKEND
    redis_url: str = Defaults.CACHE_REDIS_URL
    audio_ttl_s: int = Defaults.CACHE_AUDIO_TTL_S
    metadata_ttl_s: int = Defaults.CACHE_METADATA_TTL_S
    memory_max_items: int = Defaults.CACHE_MEMORY_MAX_ITEMS


@dataclass
class MergeConfig:
    """
    ffmpeg merge settings.

    separator/intro/outro are storage names (without extension) of the
    optional clips; an empty string disables the clip.
    """
    ffmpeg_path: str = Defaults.MERGE_FFMPEG_PATH
    bitrate_kbps: int = Defaults.MERGE_BITRATE_KBPS
    separator: str = Defaults.MERGE_SEPARATOR
    intro: str = Defaults.MERGE_INTRO
    outro: str = Defaults.MERGE_OUTRO
    shutdown_timeout_s: float = Defaults.MERGE_SHUTDOWN_TIMEOUT_S


@dataclass
class NotificationConfig:
    """Notification sinks. Logging is always on; webhook only when a URL is set."""
    webhook_url: str = ""
    timeout_s: float = Defaults.NOTIFY_TIMEOUT_S


@dataclass
class LoggingConfig:
    """
    Logging configuration.

    Log levels:
        1 = MINIMAL, 2 = NORMAL, 3 = VERBOSE, 4 = DEBUG
    """
    text_preview_chars: int = Defaults.LOGGING_TEXT_PREVIEW_CHARS
    level: int = Defaults.LOGGING_LEVEL


@dataclass
class NewsTTSConfig:
    """
    Validated configuration for the synthesis pipeline.

    Usage:
        settings = load_settings("config/settings.yaml")
        config = NewsTTSConfig.from_settings(settings)
        print(config.rate_limit.max_concurrent)
    """
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    voices: Dict[str, Dict[str, str]] = field(default_factory=dict)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    resilience: ResilienceConfig = field(default_factory=ResilienceConfig)
    batch: BatchConfig = field(default_factory=BatchConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    remote: RemoteStorageConfig = field(default_factory=RemoteStorageConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    merge: MergeConfig = field(default_factory=MergeConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_settings(cls, settings: "Settings") -> "NewsTTSConfig":
        """
        Create NewsTTSConfig from Settings with validation.

        Raises:
            ConfigValidationError: If any value fails validation.
        """
        raw = settings.raw

        # ─────────────────────────────────────────────────────────────────────
        # Provider
        # ─────────────────────────────────────────────────────────────────────
        p = raw.get("provider", {}) or {}
        provider = ProviderConfig(
            api_key=str(p.get("api_key", "")),
            base_url=str(p.get("base_url", Defaults.PROVIDER_BASE_URL)).rstrip("/"),
            model=str(p.get("model", Defaults.PROVIDER_MODEL)),
            timeout_s=float(p.get("timeout_s", Defaults.PROVIDER_TIMEOUT_S)),
            connect_timeout_s=float(p.get("connect_timeout_s", Defaults.PROVIDER_CONNECT_TIMEOUT_S)),
            stability=float(p.get("stability", Defaults.VOICE_STABILITY)),
            similarity=float(p.get("similarity", Defaults.VOICE_SIMILARITY)),
            style=float(p.get("style", Defaults.VOICE_STYLE)),
            speaker_boost=bool(p.get("speaker_boost", Defaults.VOICE_SPEAKER_BOOST)),
            speed=float(p.get("speed", Defaults.VOICE_SPEED)),
        )
        cls._validate_positive("provider.timeout_s", provider.timeout_s)
        cls._validate_positive("provider.connect_timeout_s", provider.connect_timeout_s)
        cls._validate_range("provider.stability", provider.stability, 0.0, 1.0)
        cls._validate_range("provider.similarity", provider.similarity, 0.0, 1.0)
        cls._validate_range("provider.style", provider.style, 0.0, 1.0)
        cls._validate_range("provider.speed", provider.speed, 0.7, 1.2)

        # ─────────────────────────────────────────────────────────────────────
        # Voice pools: language -> {display name: voice id}
        # ─────────────────────────────────────────────────────────────────────
        voices_raw = raw.get("voices", {}) or {}
        if not isinstance(voices_raw, dict):
            raise ConfigValidationError("voices must be a mapping of language -> {name: voice_id}")
        voices: Dict[str, Dict[str, str]] = {}
        for language, pool in voices_raw.items():
            if not isinstance(pool, dict):
                raise ConfigValidationError(f"voices.{language} must be a mapping of name -> voice_id")
            voices[str(language)] = {str(name): str(vid) for name, vid in pool.items() if vid}

        # ─────────────────────────────────────────────────────────────────────
        # Rate limiting
        # ─────────────────────────────────────────────────────────────────────
        rl = raw.get("rate_limit", {}) or {}
        rate_limit = RateLimitConfig(
            max_concurrent=int(rl.get("max_concurrent", Defaults.RATE_LIMIT_MAX_CONCURRENT)),
            requests_per_second=float(rl.get("requests_per_second", Defaults.RATE_LIMIT_PER_SECOND)),
            acquire_timeout_s=float(rl.get("acquire_timeout_s", Defaults.RATE_LIMIT_ACQUIRE_TIMEOUT_S)),
        )
        cls._validate_positive("rate_limit.max_concurrent", rate_limit.max_concurrent)
        cls._validate_positive("rate_limit.requests_per_second", rate_limit.requests_per_second)
        cls._validate_positive("rate_limit.acquire_timeout_s", rate_limit.acquire_timeout_s)

        # ─────────────────────────────────────────────────────────────────────
        # Resilience
        # ─────────────────────────────────────────────────────────────────────
        res = raw.get("resilience", {}) or {}
        resilience = ResilienceConfig(
            synthesis=cls._retry_from_raw("resilience.synthesis", res.get("synthesis"), _synthesis_retry()),
            storage=cls._retry_from_raw("resilience.storage", res.get("storage"), _storage_retry()),
            merge=cls._retry_from_raw("resilience.merge", res.get("merge"), _merge_retry()),
        )

        # ─────────────────────────────────────────────────────────────────────
        # Batch
        # ─────────────────────────────────────────────────────────────────────
        b = raw.get("batch", {}) or {}
        batch = BatchConfig(max_concurrent=int(b.get("max_concurrent", Defaults.BATCH_MAX_CONCURRENT)))
        cls._validate_positive("batch.max_concurrent", batch.max_concurrent)

        # ─────────────────────────────────────────────────────────────────────
        # Storage
        # ─────────────────────────────────────────────────────────────────────
        s = raw.get("storage", {}) or {}
        storage = StorageConfig(
            base_dir=str(s.get("base_dir", Defaults.STORAGE_BASE_DIR)),
            audio_format=str(s.get("audio_format", Defaults.STORAGE_AUDIO_FORMAT)).lower(),
            merged_subdir=str(s.get("merged_subdir", Defaults.STORAGE_MERGED_SUBDIR)),
        )
        cls._validate_choice("storage.audio_format", storage.audio_format, AUDIO_FORMATS)

        # ─────────────────────────────────────────────────────────────────────
        # Remote object storage
        # ─────────────────────────────────────────────────────────────────────
        r = raw.get("remote", {}) or {}
        remote = RemoteStorageConfig(
            enabled=bool(r.get("enabled", Defaults.REMOTE_ENABLED)),
            bucket=str(r.get("bucket", "")),
            token=str(r.get("token", "")),
            base_url=str(r.get("base_url", Defaults.REMOTE_BASE_URL)).rstrip("/"),
            prefix=str(r.get("prefix", Defaults.REMOTE_PREFIX)).strip("/"),
            timeout_s=float(r.get("timeout_s", Defaults.REMOTE_TIMEOUT_S)),
        )
        cls._validate_positive("remote.timeout_s", remote.timeout_s)

        # ─────────────────────────────────────────────────────────────────────
        # Cache
        # ─────────────────────────────────────────────────────────────────────
        c = raw.get("cache", {}) or {}
        cache = CacheConfig(
            enabled=bool(c.get("enabled", Defaults.CACHE_ENABLED)),
            backend=str(c.get("backend", Defaults.CACHE_BACKEND)).lower(),
            redis_url=str(c.get("redis_url", Defaults.CACHE_REDIS_URL)),
            audio_ttl_s=int(c.get("audio_ttl_s", Defaults.CACHE_AUDIO_TTL_S)),
            metadata_ttl_s=int(c.get("metadata_ttl_s", Defaults.CACHE_METADATA_TTL_S)),
            memory_max_items=int(c.get("memory_max_items", Defaults.CACHE_MEMORY_MAX_ITEMS)),
        )
        cls._validate_choice("cache.backend", cache.backend, ("redis", "memory", "none"))
        cls._validate_positive("cache.audio_ttl_s", cache.audio_ttl_s)
        cls._validate_positive("cache.metadata_ttl_s", cache.metadata_ttl_s)
        cls._validate_positive("cache.memory_max_items", cache.memory_max_items)

        # ─────────────────────────────────────────────────────────────────────
        # Merge
        # ─────────────────────────────────────────────────────────────────────
        m = raw.get("merge", {}) or {}
        merge = MergeConfig(
            ffmpeg_path=str(m.get("ffmpeg_path", Defaults.MERGE_FFMPEG_PATH)),
            bitrate_kbps=int(m.get("bitrate_kbps", Defaults.MERGE_BITRATE_KBPS)),
            separator=str(m.get("separator", Defaults.MERGE_SEPARATOR) or ""),
            intro=str(m.get("intro", Defaults.MERGE_INTRO) or ""),
            outro=str(m.get("outro", Defaults.MERGE_OUTRO) or ""),
            shutdown_timeout_s=float(m.get("shutdown_timeout_s", Defaults.MERGE_SHUTDOWN_TIMEOUT_S)),
        )
        cls._validate_range("merge.bitrate_kbps", merge.bitrate_kbps, 32, 320)
        cls._validate_positive("merge.shutdown_timeout_s", merge.shutdown_timeout_s)

        # ─────────────────────────────────────────────────────────────────────
        # Notifications
        # ─────────────────────────────────────────────────────────────────────
        n = raw.get("notifications", {}) or {}
        notifications = NotificationConfig(
            webhook_url=str(n.get("webhook_url", "") or ""),
            timeout_s=float(n.get("timeout_s", Defaults.NOTIFY_TIMEOUT_S)),
        )
        cls._validate_positive("notifications.timeout_s", notifications.timeout_s)

        # ─────────────────────────────────────────────────────────────────────
        # Logging
        # ─────────────────────────────────────────────────────────────────────
        logging_raw = raw.get("logging", {}) or {}
        log_level_raw = logging_raw.get("level", Defaults.LOGGING_LEVEL)
        log_level = int(coerce_level(log_level_raw)) if isinstance(log_level_raw, str) else int(log_level_raw)
        logging_cfg = LoggingConfig(
            text_preview_chars=int(logging_raw.get("text_preview_chars", Defaults.LOGGING_TEXT_PREVIEW_CHARS)),
            level=log_level,
        )
        cls._validate_non_negative("logging.text_preview_chars", logging_cfg.text_preview_chars)
        cls._validate_range("logging.level", logging_cfg.level, 1, 4)

        return cls(
            provider=provider,
            voices=voices,
            rate_limit=rate_limit,
            resilience=resilience,
            batch=batch,
            storage=storage,
            remote=remote,
            cache=cache,
            merge=merge,
            notifications=notifications,
            logging=logging_cfg,
        )

    @classmethod
    def _retry_from_raw(cls, name: str, raw: Optional[Dict[str, Any]], default: RetryConfig) -> RetryConfig:
        raw = raw or {}
        br = raw.get("breaker", {}) or {}
        breaker = BreakerConfig(
            enabled=bool(br.get("enabled", default.breaker.enabled)),
            failure_ratio=float(br.get("failure_ratio", default.breaker.failure_ratio)),
            min_throughput=int(br.get("min_throughput", default.breaker.min_throughput)),
            sampling_s=float(br.get("sampling_s", default.breaker.sampling_s)),
            break_s=float(br.get("break_s", default.breaker.break_s)),
        )
        retry = RetryConfig(
            max_retries=int(raw.get("max_retries", default.max_retries)),
            base_delay_s=float(raw.get("base_delay_s", default.base_delay_s)),
            jitter=bool(raw.get("jitter", default.jitter)),
            breaker=breaker,
        )
        cls._validate_non_negative(f"{name}.max_retries", retry.max_retries)
        cls._validate_non_negative(f"{name}.base_delay_s", retry.base_delay_s)
        if breaker.enabled:
            cls._validate_range(f"{name}.breaker.failure_ratio", breaker.failure_ratio, 0.01, 1.0)
            cls._validate_positive(f"{name}.breaker.min_throughput", breaker.min_throughput)
            cls._validate_positive(f"{name}.breaker.sampling_s", breaker.sampling_s)
            cls._validate_positive(f"{name}.breaker.break_s", breaker.break_s)
        return retry

    @staticmethod
    def _validate_positive(name: str, value: int | float) -> None:
        """Validate that a value is positive (> 0)."""
        if value <= 0:
            raise ConfigValidationError(f"{name} must be positive, got {value}")

    @staticmethod
    def _validate_non_negative(name: str, value: int | float) -> None:
        """Validate that a value is non-negative (>= 0)."""
        if value < 0:
            raise ConfigValidationError(f"{name} must be non-negative, got {value}")

    @staticmethod
    def _validate_range(name: str, value: int | float, min_val: int | float, max_val: int | float) -> None:
        """Validate that a value is within a range [min_val, max_val]."""
        if not (min_val <= value <= max_val):
            raise ConfigValidationError(f"{name} must be between {min_val} and {max_val}, got {value}")

    @staticmethod
    def _validate_choice(name: str, value: str, choices: tuple) -> None:
        if value not in choices:
            raise ConfigValidationError(f"{name} must be one of {', '.join(choices)}, got {value!r}")


@dataclass(frozen=True)
class Settings:
    """
    Immutable settings container loaded from YAML.

    This is the raw settings object before validation. Use
    get_config() to get a validated NewsTTSConfig.
    """
    raw: Dict[str, Any]

    @property
    def default_language(self) -> str:
        return str(self.raw.get("default_language", "tr"))

    @property
    def audio_format(self) -> str:
        return str(self.raw.get("storage", {}).get("audio_format", Defaults.STORAGE_AUDIO_FORMAT)).lower()

    def get_config(self) -> NewsTTSConfig:
        """
        Get validated NewsTTSConfig from these settings.

        Raises:
            ConfigValidationError: If validation fails.
        """
        return NewsTTSConfig.from_settings(self)


# Environment variable -> (section, key)
_ENV_OVERRIDES = {
    "NEWS_TTS_PROVIDER_API_KEY": ("provider", "api_key"),
    "NEWS_TTS_REDIS_URL": ("cache", "redis_url"),
    "NEWS_TTS_STORAGE_DIR": ("storage", "base_dir"),
    "NEWS_TTS_FFMPEG": ("merge", "ffmpeg_path"),
    "NEWS_TTS_WEBHOOK_URL": ("notifications", "webhook_url"),
}


def _apply_env_overrides(raw: Dict[str, Any]) -> Dict[str, Any]:
    for env, (section, key) in _ENV_OVERRIDES.items():
        value = os.getenv(env)
        if value:
            section_raw = raw.get(section)
            if not isinstance(section_raw, dict):
                section_raw = {}
                raw[section] = section_raw
            section_raw[key] = value
    return raw


def load_settings(path: str = "config/settings.yaml") -> Settings:
    """
    Load settings from a YAML configuration file.

    Environment variable overrides:
        - NEWS_TTS_PROVIDER_API_KEY: provider.api_key
        - NEWS_TTS_REDIS_URL: cache.redis_url
        - NEWS_TTS_STORAGE_DIR: storage.base_dir
        - NEWS_TTS_FFMPEG: merge.ffmpeg_path
        - NEWS_TTS_WEBHOOK_URL: notifications.webhook_url

    Raises:
        FileNotFoundError: If the settings file doesn't exist.
    """
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"settings file not found: {p.resolve()}")

    with p.open("r", encoding="utf-8") as f:
        raw: Dict[str, Any] = yaml.safe_load(f) or {}

    return Settings(raw=_apply_env_overrides(raw))


def load_settings_or_default(path: str = "config/settings.yaml") -> Settings:
    """Like load_settings(), but a missing file yields defaults plus env overrides."""
    if Path(path).exists():
        return load_settings(path)
    return Settings(raw=_apply_env_overrides({}))
