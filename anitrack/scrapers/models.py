from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, Field

ChangeKind = Literal["sub", "dub", "all"]


class PlayerSource(BaseModel):
    source_id: str
    label: str
    media_file: str


class AnimeRecord(BaseModel):
    url: str  # canonical detail page URL, unique key of the record
    title: str
    description: Optional[str] = None
    image_url: Optional[str] = None
    sub_count: int = Field(default=0, ge=0)
    dub_count: int = Field(default=0, ge=0)
    sources: List[PlayerSource] = []
    last_updated: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class PlaylistPayload(BaseModel):
    success: bool = False
    response: str = ""


@dataclass
class Extracted:
    record: AnimeRecord


@dataclass
class Skipped:
    reason: str


ExtractionResult = Union[Extracted, Skipped]


@dataclass
class ScanCursor:
    page: int = 1
    consecutive_unchanged: int = 0


@dataclass
class PageScanResult:
    processed: int
    cursor: ScanCursor
    stop: bool
    failed: bool = False


@dataclass
class ScanSummary:
    pages_scanned: int = 0
    total_processed: int = 0
    page_failures: int = 0
    start_time: float = 0.0
    end_time: float = 0.0
    stop_reason: str = ""

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time if self.start_time else 0.0
