"""
Data model shared by the aggregator, summary builder and renderer.

Field names are snake_case in Python and camelCase on the wire
(deviceType, reportUrl, totalUrls, ...), matching the JSON the audit
collaborators produce.
"""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .categories import normalize_category_id

DeviceType = Literal["mobile", "desktop"]


class _Model(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


class CategoryScore(_Model):
    id: str
    title: str
    score: float = Field(ge=0, le=1)

    @field_validator("id")
    @classmethod
    def _normalize_id(cls, value: str) -> str:
        return normalize_category_id(value)


class RunResult(_Model):
    """One audit invocation, or the median-reduced result of several."""

    url: str
    device_type: DeviceType
    categories: tuple[CategoryScore, ...] = ()
    report_url: Optional[str] = None

    def scores(self) -> dict[str, float]:
        return {c.id: c.score for c in self.categories}


class Summary(_Model):
    total_urls: int = 0
    total_tests: int = 0
    average_scores: dict[str, float] = {}
    scores_by_device: dict[str, dict[str, float]] = {}
    scores_by_url: dict[str, dict[str, float]] = {}
    min_scores: dict[str, float] = {}
    max_scores: dict[str, float] = {}
