"""Pydantic v2 models for the label pipeline.

These models define the typed records that flow between components:
- ExtractedLabel, EnrichmentData (LLM outputs)
- QueueItem, EnrichmentJob, EmbeddingJob (queue rows)
- Region, Producer, Wine, Vintage (catalog entities)
- IdentityEmbedding, VisualEmbeddingMetadata (vector records)
- SimilarWine (recommendation output)
"""

import re
import unicodedata
from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, field_validator, model_validator

from vinho_pipeline.core.enums import (
    EmbeddingJobType,
    IdentityDecision,
    JobStatus,
    MatchBand,
    WineType,
)

MIN_VINTAGE_YEAR = 1900

_YEAR_PATTERN = re.compile(r"\b(1[89]\d{2}|20\d{2})\b")


def _utc_now() -> datetime:
    """Return current UTC datetime (timezone-aware)."""
    return datetime.now(UTC)


def coerce_vintage_year(value: Any) -> int | None:
    """
    Coerce a model-supplied vintage into a plausible year or None.

    Models sometimes answer with strings ("2017", "circa 2015-2016") or
    out-of-range numbers. The first 4-digit year found in a string is used;
    anything outside 1900..current year becomes None.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        match = _YEAR_PATTERN.search(value)
        if match is None:
            return None
        value = int(match.group(1))
    if isinstance(value, float):
        if not value.is_integer():
            return None
        value = int(value)
    if not isinstance(value, int):
        return None
    if value < MIN_VINTAGE_YEAR or value > _utc_now().year:
        return None
    return value


def _clean_optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _clean_str_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = [part for part in re.split(r"[,/;]", value)]
    if not isinstance(value, (list, tuple)):
        return []
    cleaned: list[str] = []
    for item in value:
        if item is None:
            continue
        text = str(item).strip()
        if text and text.lower() not in {v.lower() for v in cleaned}:
            cleaned.append(text)
    return cleaned


def _clean_coordinate(value: Any, limit: float) -> float | None:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if number == 0.0 or abs(number) > limit:
        return None
    return number


def coerce_wine_type(value: Any) -> WineType | None:
    """Map a model-supplied wine type onto WineType; unknown values become None."""
    if value is None or isinstance(value, WineType):
        return value
    text = unicodedata.normalize("NFKD", str(value).strip().lower())
    text = "".join(c for c in text if not unicodedata.combining(c))
    for wine_type in WineType:
        plain = unicodedata.normalize("NFKD", wine_type.value)
        plain = "".join(c for c in plain if not unicodedata.combining(c))
        if text == plain:
            return wine_type
    return None


# ============================================================================
# LLM Outputs
# ============================================================================


PRODUCER_DETAIL_COLUMNS = {
    "producer_website": "website",
    "producer_address": "address",
    "producer_city": "city",
    "producer_postal_code": "postal_code",
    "latitude": "latitude",
    "longitude": "longitude",
}


class ProducerLocationFields(BaseModel):
    """Producer contact and winery location fields shared by LLM outputs."""

    producer_website: str | None = None
    producer_address: str | None = None
    producer_city: str | None = None
    producer_postal_code: str | None = None
    latitude: float | None = None
    longitude: float | None = None

    @field_validator(
        "producer_website",
        "producer_address",
        "producer_city",
        "producer_postal_code",
        mode="before",
    )
    @classmethod
    def clean_producer_text(cls, v: Any) -> str | None:
        return _clean_optional_str(v)

    @field_validator("latitude", mode="before")
    @classmethod
    def clean_latitude(cls, v: Any) -> float | None:
        return _clean_coordinate(v, 90.0)

    @field_validator("longitude", mode="before")
    @classmethod
    def clean_longitude(cls, v: Any) -> float | None:
        return _clean_coordinate(v, 180.0)

    def producer_details(self) -> dict[str, Any]:
        """Known producer fields keyed by producer column name."""
        return {
            column: getattr(self, field)
            for field, column in PRODUCER_DETAIL_COLUMNS.items()
            if getattr(self, field) is not None
        }


class ExtractedLabel(ProducerLocationFields):
    """Structured fields read off a wine label by the vision model."""

    winery_name: str
    wine_name: str
    varietals: list[str] = Field(default_factory=list)
    year: int | None = None
    region: str | None = None
    country: str | None = None
    abv_percent: float | None = None
    confidence: float = Field(ge=0.0, le=1.0)

    @model_validator(mode="before")
    @classmethod
    def fold_single_varietal(cls, data: Any) -> Any:
        """Accept a single ``varietal`` string alongside the ``varietals`` list."""
        if isinstance(data, dict) and "varietal" in data:
            data = dict(data)
            single = data.pop("varietal")
            merged = _clean_str_list(data.get("varietals"))
            for name in _clean_str_list(single):
                if name.lower() not in {m.lower() for m in merged}:
                    merged.append(name)
            data["varietals"] = merged
        return data

    @field_validator("winery_name", "wine_name")
    @classmethod
    def name_not_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("name cannot be empty")
        return v.strip()

    @field_validator("varietals", mode="before")
    @classmethod
    def clean_varietals(cls, v: Any) -> list[str]:
        return _clean_str_list(v)

    @field_validator("year", mode="before")
    @classmethod
    def clean_year(cls, v: Any) -> int | None:
        return coerce_vintage_year(v)

    @field_validator("region", "country", mode="before")
    @classmethod
    def clean_location(cls, v: Any) -> str | None:
        return _clean_optional_str(v)

    @field_validator("abv_percent", mode="before")
    @classmethod
    def clean_abv(cls, v: Any) -> float | None:
        if v is None or v == "":
            return None
        try:
            abv = float(str(v).replace("%", "").strip())
        except ValueError:
            return None
        return abv if 0.0 < abv <= 100.0 else None

    @property
    def missing_fields(self) -> list[str]:
        """Identity fields the label did not show."""
        missing = [name for name in ("year", "region", "country") if getattr(self, name) is None]
        if not self.varietals:
            missing.append("varietals")
        return missing

    def fill_from(self, data: "EnrichmentData") -> "ExtractedLabel":
        """Copy of this label with empty fields taken from enrichment data."""
        updates: dict[str, Any] = {}
        for name in ("year", "region", "country", *PRODUCER_DETAIL_COLUMNS):
            if getattr(self, name) is None and getattr(data, name) is not None:
                updates[name] = getattr(data, name)
        if not self.varietals and data.varietals:
            updates["varietals"] = list(data.varietals)
        return self.model_copy(update=updates)


class EnrichmentData(ProducerLocationFields):
    """Metadata proposed by the enrichment model for an existing wine."""

    wine_type: WineType | None = None
    color: str | None = None
    style: str | None = None
    food_pairings: list[str] = Field(default_factory=list)
    serving_temperature: str | None = None
    tasting_notes: str | None = None
    varietals: list[str] = Field(default_factory=list)
    year: int | None = None
    region: str | None = None
    country: str | None = None

    @field_validator("wine_type", mode="before")
    @classmethod
    def clean_wine_type(cls, v: Any) -> WineType | None:
        return coerce_wine_type(_clean_optional_str(v))

    @field_validator(
        "color", "style", "serving_temperature", "tasting_notes", "region", "country",
        mode="before",
    )
    @classmethod
    def clean_text(cls, v: Any) -> str | None:
        return _clean_optional_str(v)

    @field_validator("food_pairings", "varietals", mode="before")
    @classmethod
    def clean_lists(cls, v: Any) -> list[str]:
        return _clean_str_list(v)

    @field_validator("year", mode="before")
    @classmethod
    def clean_year(cls, v: Any) -> int | None:
        return coerce_vintage_year(v)


class WineDescriptor(BaseModel):
    """Known facts about a wine, sent to the enrichment model."""

    producer: str
    wine_name: str
    year: int | None = None
    region: str | None = None
    country: str | None = None
    varietals: list[str] = Field(default_factory=list)


# ============================================================================
# Queue Rows
# ============================================================================


class ProcessedData(BaseModel):
    """Payload exposed on a completed wine-scan row."""

    producer_id: UUID
    wine_id: UUID
    vintage_id: UUID
    region_id: UUID | None = None
    producer_name: str
    wine_name: str
    year: int | None = None
    region: str | None = None
    country: str | None = None
    varietals: list[str] = Field(default_factory=list)
    abv_percent: float | None = None
    confidence: float = 0.0
    identity_decision: IdentityDecision | None = None
    reused: bool = False
    enriched_fields: list[str] = Field(default_factory=list)
    prompt_version: str | None = None


class QueueItem(BaseModel):
    """A wine-label scan waiting for (or finished with) processing."""

    id: UUID = Field(default_factory=uuid4)
    user_id: str
    image_url: str
    ocr_text: str | None = None
    scan_id: str | None = None
    status: JobStatus = JobStatus.PENDING
    retry_count: int = Field(default=0, ge=0)
    processed_data: ProcessedData | None = None
    error_message: str | None = None
    idempotency_key: str
    created_at: datetime = Field(default_factory=_utc_now)
    claimed_at: datetime | None = None
    processed_at: datetime | None = None


class EnrichmentJob(BaseModel):
    """Request to backfill metadata on an already-resolved wine."""

    id: UUID = Field(default_factory=uuid4)
    vintage_id: UUID
    wine_id: UUID
    user_id: str
    producer_name: str
    wine_name: str
    year: int | None = None
    region: str | None = None
    country: str | None = None
    status: JobStatus = JobStatus.PENDING
    priority: int = 0
    retry_count: int = Field(default=0, ge=0)
    idempotency_key: str
    enrichment_data: EnrichmentData | None = None
    error_message: str | None = None
    created_at: datetime = Field(default_factory=_utc_now)
    claimed_at: datetime | None = None
    processed_at: datetime | None = None


class EmbeddingJob(BaseModel):
    """Request to compute an identity or visual embedding."""

    id: UUID = Field(default_factory=uuid4)
    job_type: EmbeddingJobType
    wine_id: UUID
    vintage_id: UUID | None = None
    scan_id: str | None = None
    input_text: str | None = None
    input_image_url: str | None = None
    status: JobStatus = JobStatus.PENDING
    retry_count: int = Field(default=0, ge=0)
    idempotency_key: str
    result: dict[str, Any] | None = None
    error_message: str | None = None
    created_at: datetime = Field(default_factory=_utc_now)
    claimed_at: datetime | None = None
    processed_at: datetime | None = None

    @model_validator(mode="after")
    def input_matches_type(self) -> "EmbeddingJob":
        if self.job_type == EmbeddingJobType.IDENTITY and not self.input_text:
            raise ValueError("identity jobs require input_text")
        if self.job_type == EmbeddingJobType.VISUAL and not self.input_image_url:
            raise ValueError("visual jobs require input_image_url")
        return self


# ============================================================================
# Catalog Entities
# ============================================================================


class Region(BaseModel):
    """Wine region within a country."""

    id: UUID = Field(default_factory=uuid4)
    name: str
    country: str


class Producer(BaseModel):
    """Winery or producer."""

    id: UUID = Field(default_factory=uuid4)
    name: str
    region_id: UUID | None = None
    website: str | None = None
    address: str | None = None
    city: str | None = None
    postal_code: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    created_at: datetime = Field(default_factory=_utc_now)

    @field_validator("name")
    @classmethod
    def name_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("name cannot be empty")
        return v.strip()


class Wine(BaseModel):
    """A wine (cuvée) independent of vintage year."""

    id: UUID = Field(default_factory=uuid4)
    producer_id: UUID
    name: str
    is_non_vintage: bool = False
    wine_type: str | None = None
    color: str | None = None
    style: str | None = None
    food_pairings: list[str] | None = None
    serving_temperature: str | None = None
    tasting_notes: str | None = None
    created_at: datetime = Field(default_factory=_utc_now)

    @property
    def missing_metadata(self) -> list[str]:
        """Names of enrichment fields that are still unset."""
        missing = [
            field
            for field in ("wine_type", "color", "style")
            if getattr(self, field) is None
        ]
        if not self.food_pairings:
            missing.append("food_pairings")
        return missing


class Vintage(BaseModel):
    """A specific release of a wine. ``year`` is None for non-vintage bottlings."""

    id: UUID = Field(default_factory=uuid4)
    wine_id: UUID
    year: int | None = None
    abv: float | None = None
    created_at: datetime = Field(default_factory=_utc_now)


# ============================================================================
# Embeddings & Recommendations
# ============================================================================


class IdentityEmbedding(BaseModel):
    """Textual identity vector for a wine."""

    wine_id: UUID
    vector: list[float]
    source_text: str
    model: str
    version: int = 1
    completeness_score: float = Field(ge=0.0, le=1.0)


class VisualEmbeddingMetadata(BaseModel):
    """Metadata stored alongside a label vector."""

    wine_id: str
    vintage_id: str | None = None
    scan_id: str | None = None
    producer_name: str | None = None
    wine_name: str | None = None
    image_url: str | None = None
    created_at: datetime = Field(default_factory=_utc_now)


class SimilarWine(BaseModel):
    """A visually similar wine surfaced as a recommendation."""

    wine_id: str
    wine_name: str
    producer_name: str
    similarity: float
    match_percent: int
    band: MatchBand
    image_url: str | None = None
