"""YAML config loader."""

import logging
from dataclasses import dataclass, field
from typing import Dict

import yaml

from .errors import ValidationError

DEFAULT_USER_AGENT = "edgar-ingest/1.0 (research; ops@example.com)"


@dataclass
class DownloadConfig:
    timeout: int = 30
    max_retries: int = 2
    backoff_factor: int = 2
    user_agent: str = DEFAULT_USER_AGENT
    rate_limit_requests: int = 8
    rate_limit_period: float = 1.0
    archives_base_url: str = "https://www.sec.gov/Archives/"
    current_feed_url: str = (
        "https://www.sec.gov/cgi-bin/browse-edgar?action=getcurrent&type={type}"
        "&company=&dateb=&owner=include&start={start}&count={count}&output=atom"
    )
    company_tickers_url: str = "https://www.sec.gov/files/company_tickers.json"


@dataclass
class PipelineConfig:
    batch_size: int = 100
    batch_delay: float = 1.0
    item_delay: float = 0.1
    max_workers: int = 1
    max_retries: int = 3
    retry_backoff_base: float = 60.0
    retry_backoff_max: float = 3600.0
    blocked_backoff_multiplier: float = 4.0
    retry_delay: float = 0.5
    lookback_days: int = 3
    max_backfill_days: int = 30
    auto_backfill: bool = True
    skip_weekends: bool = False
    retention_days: int = 3650
    stale_after_minutes: int = 60


@dataclass
class FilingTypeConfig:
    enabled: bool = True


@dataclass
class JobConfig:
    enabled: bool = True
    schedule: str = ""
    description: str = ""


@dataclass
class AppConfig:
    data_dir: str = "data"
    db_path: str = "edgar_ingest.db"
    log_dir: str = "logs"
    log_level: str = "INFO"
    download: DownloadConfig = field(default_factory=DownloadConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    filing_types: Dict[str, FilingTypeConfig] = field(default_factory=dict)
    jobs: Dict[str, JobConfig] = field(default_factory=dict)

    def filing_type_enabled(self, name: str) -> bool:
        cfg = self.filing_types.get(name)
        return cfg.enabled if cfg else True

    def job_config(self, name: str) -> JobConfig:
        return self.jobs.get(name, JobConfig())


def _build(cls, raw):
    return cls(**{k: v for k, v in (raw or {}).items() if k in cls.__dataclass_fields__})


def config_from_dict(raw: dict) -> AppConfig:
    raw = raw or {}
    filing_types = {}
    for name, ft_raw in (raw.get("filing_types") or {}).items():
        filing_types[name] = _build(FilingTypeConfig, ft_raw)

    jobs = {}
    for name, job_raw in (raw.get("jobs") or {}).items():
        jobs[name] = _build(JobConfig, job_raw)

    config = AppConfig(
        data_dir=raw.get("data_dir", "data"),
        db_path=raw.get("db_path", "edgar_ingest.db"),
        log_dir=raw.get("log_dir", "logs"),
        log_level=str(raw.get("log_level", "INFO")),
        download=_build(DownloadConfig, raw.get("download")),
        pipeline=_build(PipelineConfig, raw.get("pipeline")),
        filing_types=filing_types,
        jobs=jobs,
    )
    validate_config(config)
    return config


def load_config(config_path: str = "config.yaml") -> AppConfig:
    with open(config_path) as f:
        raw = yaml.safe_load(f)
    return config_from_dict(raw)


def validate_config(config: AppConfig):
    from .scheduler import parse_cron_expression

    if not isinstance(logging.getLevelName(config.log_level.upper()), int):
        raise ValidationError(f"Unknown log_level: {config.log_level!r}")

    dl = config.download
    if dl.rate_limit_requests < 1 or dl.rate_limit_period <= 0:
        raise ValidationError(
            f"Rate limit must be positive (got {dl.rate_limit_requests}/{dl.rate_limit_period}s)"
        )
    if dl.max_retries < 1:
        raise ValidationError("download.max_retries must be at least 1")

    p = config.pipeline
    if p.max_workers < 1:
        raise ValidationError("pipeline.max_workers must be at least 1")
    if p.max_retries < 0:
        raise ValidationError("pipeline.max_retries must not be negative")
    # Cleanup must never delete records inside the window backfill scans,
    # or backfill would see those days as missing and fetch them again.
    if p.retention_days <= p.max_backfill_days:
        raise ValidationError(
            f"pipeline.retention_days ({p.retention_days}) must exceed "
            f"pipeline.max_backfill_days ({p.max_backfill_days})"
        )

    for name, job in config.jobs.items():
        if not job.schedule:
            continue
        try:
            parse_cron_expression(job.schedule)
        except ValueError as e:
            raise ValidationError(f"jobs.{name}.schedule: {e}") from e
