"""
Action configuration.

Inputs arrive as INPUT_<NAME> environment variables (GitHub Actions
convention); a local .env file is loaded first for runs outside CI.
"""

import os
from typing import Literal, Mapping, Optional
from urllib.parse import urlparse

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

DEFAULT_DEVICE_TYPES = "mobile,desktop"
DEFAULT_CATEGORIES = "performance,accessibility,best-practices,seo"
DEFAULT_CHROME_FLAGS = "--no-sandbox --headless --disable-gpu"
VALID_DEVICE_TYPES = ("mobile", "desktop")


class ConfigError(ValueError):
    pass


def parse_input_list(value: Optional[str]) -> list[str]:
    """Split a comma-separated input, dropping blanks."""
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


class ReportConfig(BaseModel):
    urls: list[str]
    device_types: list[str] = Field(default_factory=lambda: parse_input_list(DEFAULT_DEVICE_TYPES))
    categories: list[str] = Field(default_factory=lambda: parse_input_list(DEFAULT_CATEGORIES))
    runs_per_url: int = Field(default=1, ge=1)
    fail_on_score_below: int = Field(default=0, ge=0, le=100)
    timeout: int = Field(default=60, gt=0)

    slack_webhook_url: Optional[str] = None
    slack_token: Optional[str] = None
    slack_channel: Optional[str] = None
    slack_title: str = "Lighthouse Test Results"
    slack_timeout_ms: int = Field(default=10000, gt=0)

    chrome_flags: str = DEFAULT_CHROME_FLAGS
    throttling_method: Literal["simulate", "devtools", "provided"] = "simulate"
    locale: str = "en-US"
    use_psi_api: bool = False
    psi_api_key: Optional[str] = None
    report_layout: Literal["compact", "detailed"] = "compact"
    dry_run: bool = False

    @field_validator("urls")
    @classmethod
    def _check_urls(cls, urls: list[str]) -> list[str]:
        if not urls:
            raise ValueError("At least one URL must be provided")
        for url in urls:
            parsed = urlparse(url)
            if parsed.scheme not in ("http", "https") or not parsed.netloc:
                raise ValueError(f"Invalid URL: {url}")
        return urls

    @field_validator("device_types")
    @classmethod
    def _check_device_types(cls, device_types: list[str]) -> list[str]:
        if not device_types:
            raise ValueError("At least one device type must be provided")
        for device_type in device_types:
            if device_type not in VALID_DEVICE_TYPES:
                raise ValueError(f"Invalid device type: {device_type}. Must be 'mobile' or 'desktop'")
        return device_types

    @model_validator(mode="after")
    def _check_destinations(self):
        if not self.dry_run and not self.slack_webhook_url and not self.slack_token:
            raise ValueError("Either slack_webhook_url or slack_token must be provided")
        if self.use_psi_api and not self.psi_api_key:
            raise ValueError("psi_api_key is required when use_psi_api is enabled")
        return self

    @property
    def score_threshold(self) -> float:
        return self.fail_on_score_below / 100


LIST_INPUTS = {"urls", "device_types", "categories"}
BOOL_INPUTS = {"use_psi_api", "dry_run"}


def _input(environ: Mapping[str, str], name: str) -> Optional[str]:
    value = environ.get(f"INPUT_{name.upper()}", "").strip()
    return value or None


def _describe(error: dict) -> str:
    message = error["msg"].removeprefix("Value error, ")
    if error["loc"]:
        return f"{error['loc'][0]}: {message}"
    return message


def load_config(environ: Optional[Mapping[str, str]] = None, **overrides) -> ReportConfig:
    """Build a ReportConfig from INPUT_* variables plus explicit overrides."""
    if environ is None:
        load_dotenv()
        environ = os.environ

    values = {}
    for name in ReportConfig.model_fields:
        raw = _input(environ, name)
        if raw is None:
            continue
        if name in LIST_INPUTS:
            values[name] = parse_input_list(raw)
        elif name in BOOL_INPUTS:
            values[name] = raw.lower() in ("1", "true", "yes")
        else:
            values[name] = raw
    values.update({k: v for k, v in overrides.items() if v is not None})
    values.setdefault("urls", [])

    try:
        return ReportConfig(**values)
    except ValidationError as e:
        problems = "; ".join(_describe(err) for err in e.errors())
        raise ConfigError(f"Input validation failed: {problems}") from e


def ci_run_url(environ: Optional[Mapping[str, str]] = None) -> Optional[str]:
    """Link back to the CI run, when the GitHub context variables are set."""
    environ = os.environ if environ is None else environ
    server = environ.get("GITHUB_SERVER_URL")
    repository = environ.get("GITHUB_REPOSITORY")
    run_id = environ.get("GITHUB_RUN_ID")
    if not (server and repository and run_id):
        return None
    return f"{server}/{repository}/actions/runs/{run_id}"
