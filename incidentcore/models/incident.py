"""Incident record models for the duplicate detection engine."""

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


COUNT_FIELDS = (
    "casualties",
    "kidnapped_count",
    "detained_count",
    "injured_count",
    "displaced_count",
)

# Reports may arrive stamped in a later timezone than the evaluating host.
REPORTED_AT_SKEW = timedelta(hours=24)


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Interpret naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _coerce_datetime(value: Any) -> Any:
    """Accept plain dates (object or YYYY-MM-DD string) for datetime fields."""
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, str):
        text = value.strip()
        if len(text) == 10:
            return datetime.strptime(text, "%Y-%m-%d").replace(tzinfo=timezone.utc)
        return datetime.fromisoformat(text.replace("Z", "+00:00"))
    return value


class IncidentType(str, Enum):
    """Categories of rights violations."""

    AIRSTRIKE = "AIRSTRIKE"
    CHEMICAL_ATTACK = "CHEMICAL_ATTACK"
    DETENTION = "DETENTION"
    DISPLACEMENT = "DISPLACEMENT"
    EXECUTION = "EXECUTION"
    SHELLING = "SHELLING"
    SIEGE = "SIEGE"
    TORTURE = "TORTURE"
    MURDER = "MURDER"
    SHOOTING = "SHOOTING"
    HOME_INVASION = "HOME_INVASION"
    EXPLOSION = "EXPLOSION"
    AMBUSH = "AMBUSH"
    KIDNAPPING = "KIDNAPPING"
    LANDMINE = "LANDMINE"
    OTHER = "OTHER"


class PerpetratorAffiliation(str, Enum):
    """Known perpetrator affiliations."""

    ASSAD_REGIME = "assad_regime"
    POST_8TH_DECEMBER_GOVERNMENT = "post_8th_december_government"
    VARIOUS_ARMED_GROUPS = "various_armed_groups"
    ISIS = "isis"
    SDF = "sdf"
    ISRAEL = "israel"
    TURKEY = "turkey"
    DRUZE_MILITIAS = "druze_militias"
    RUSSIA = "russia"
    IRAN_SHIA_MILITIAS = "iran_shia_militias"
    INTERNATIONAL_COALITION = "international_coalition"
    UNKNOWN = "unknown"


class CertaintyLevel(str, Enum):
    """How certain the reporting is. Ordered possible < probable < confirmed."""

    POSSIBLE = "possible"
    PROBABLE = "probable"
    CONFIRMED = "confirmed"

    @property
    def rank(self) -> int:
        return _CERTAINTY_RANK[self]


_CERTAINTY_RANK = {
    CertaintyLevel.POSSIBLE: 1,
    CertaintyLevel.PROBABLE: 2,
    CertaintyLevel.CONFIRMED: 3,
}


class Gender(str, Enum):
    MALE = "male"
    FEMALE = "female"
    OTHER = "other"
    UNKNOWN = "unknown"


class VictimStatus(str, Enum):
    CIVILIAN = "civilian"
    COMBATANT = "combatant"
    UNKNOWN = "unknown"


class LocalizedText(BaseModel):
    """A bilingual text value. Either language may be empty."""

    model_config = ConfigDict(str_strip_whitespace=True)

    en: str = ""
    ar: str = ""

    @field_validator("en", "ar", mode="before")
    @classmethod
    def none_to_empty(cls, v):
        return "" if v is None else v

    def get(self, language: str) -> str:
        return getattr(self, language, "") or ""


class Coordinates(BaseModel):
    """A WGS84 point. Accepts the stored ``[lon, lat]`` list form."""

    lon: float = Field(ge=-180.0, le=180.0)
    lat: float = Field(ge=-90.0, le=90.0)

    @model_validator(mode="before")
    @classmethod
    def from_pair(cls, data):
        if isinstance(data, (list, tuple)):
            if len(data) != 2:
                raise ValueError("Coordinates must be [longitude, latitude]")
            return {"lon": data[0], "lat": data[1]}
        return data

    def as_pair(self) -> List[float]:
        return [self.lon, self.lat]


class Location(BaseModel):
    """Where an incident happened."""

    coordinates: Optional[Coordinates] = None
    name: LocalizedText
    administrative_division: LocalizedText = Field(default_factory=LocalizedText)

    @field_validator("name")
    @classmethod
    def english_name_required(cls, v: LocalizedText) -> LocalizedText:
        if not 2 <= len(v.en) <= 100:
            raise ValueError("Location name (English) must be 2-100 characters")
        return v

    def has_coordinates(self) -> bool:
        return self.coordinates is not None


class Victim(BaseModel):
    """One victim of an incident."""

    age: Optional[int] = Field(default=None, ge=0, le=120)
    gender: Gender = Gender.UNKNOWN
    status: VictimStatus = VictimStatus.UNKNOWN
    group_affiliation: LocalizedText = Field(default_factory=LocalizedText)
    sectarian_identity: LocalizedText = Field(default_factory=LocalizedText)
    death_date: Optional[date] = None

    @field_validator("death_date")
    @classmethod
    def death_date_not_in_future(cls, v: Optional[date]) -> Optional[date]:
        if v is not None and v > utcnow().date():
            raise ValueError("Death date cannot be in the future")
        return v

    def identity_key(self) -> tuple:
        """Two victims sharing this key are treated as the same person."""
        return (
            self.age,
            self.gender.value,
            self.status.value,
            self.group_affiliation.en,
            self.sectarian_identity.en,
        )


class Tag(BaseModel):
    """A bilingual label."""

    model_config = ConfigDict(str_strip_whitespace=True)

    en: str = Field(min_length=1, max_length=50)
    ar: str = Field(default="", max_length=50)


class IncidentRecord(BaseModel):
    """A single reported rights-violation incident."""

    id: Optional[str] = None
    type: IncidentType
    occurred_at: datetime
    reported_at: Optional[datetime] = None
    location: Location
    description: LocalizedText
    source: LocalizedText = Field(default_factory=LocalizedText)
    source_url: LocalizedText = Field(default_factory=LocalizedText)
    verification_method: LocalizedText = Field(default_factory=LocalizedText)
    perpetrator: LocalizedText = Field(default_factory=LocalizedText)
    perpetrator_affiliation: PerpetratorAffiliation = PerpetratorAffiliation.UNKNOWN

    casualties: int = Field(default=0, ge=0)
    kidnapped_count: int = Field(default=0, ge=0)
    detained_count: int = Field(default=0, ge=0)
    injured_count: int = Field(default=0, ge=0)
    displaced_count: int = Field(default=0, ge=0)

    victims: List[Victim] = Field(default_factory=list)
    media_links: List[str] = Field(default_factory=list)
    tags: List[Tag] = Field(default_factory=list)
    verified: bool = False
    certainty_level: CertaintyLevel = CertaintyLevel.POSSIBLE
    related_violations: List[str] = Field(default_factory=list)

    content_hash: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    created_by: Optional[str] = None
    updated_by: Optional[str] = None

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, v):
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @field_validator("perpetrator_affiliation", mode="before")
    @classmethod
    def normalize_affiliation(cls, v):
        if v is None:
            return PerpetratorAffiliation.UNKNOWN
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("occurred_at", "reported_at", "created_at", "updated_at", mode="before")
    @classmethod
    def parse_datetimes(cls, v):
        return _coerce_datetime(v)

    @field_validator("occurred_at", "created_at", "updated_at")
    @classmethod
    def to_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v) if v is not None else v

    @field_validator("occurred_at")
    @classmethod
    def occurred_not_in_future(cls, v: datetime) -> datetime:
        if v > utcnow():
            raise ValueError("Incident date cannot be in the future")
        return v

    @field_validator("reported_at")
    @classmethod
    def reported_within_skew(cls, v: Optional[datetime]) -> Optional[datetime]:
        if v is None:
            return v
        v = ensure_utc(v)
        if v > utcnow() + REPORTED_AT_SKEW:
            raise ValueError("Reported date cannot be more than 24 hours in the future")
        return v

    @field_validator("description")
    @classmethod
    def english_description_required(cls, v: LocalizedText) -> LocalizedText:
        if not 10 <= len(v.en) <= 2000:
            raise ValueError("Description (English) must be 10-2000 characters")
        return v

    @field_validator("media_links", "related_violations")
    @classmethod
    def drop_blank_strings(cls, v: List[str]) -> List[str]:
        return [item.strip() for item in v if item and item.strip()]

    def counts(self) -> Dict[str, int]:
        return {name: getattr(self, name) for name in COUNT_FIELDS}

    def total_affected(self) -> int:
        return sum(self.counts().values())

    def description_length(self) -> int:
        """Length of the longest populated description."""
        return max(len(self.description.en), len(self.description.ar))

    def completeness(self) -> int:
        return len(self.victims) + len(self.media_links) + len(self.tags)

    def dead_victim_count(self) -> int:
        return sum(1 for victim in self.victims if victim.death_date is not None)

    def related_refs(self) -> List["IncidentRef"]:
        return [IncidentRef(ref_id) for ref_id in self.related_violations]

    def summary(self) -> Dict[str, Any]:
        """Compact view used in reports and review tasks."""
        return {
            "id": self.id,
            "type": self.type.value,
            "occurred_at": self.occurred_at.isoformat(),
            "location": self.location.name.en,
            "perpetrator_affiliation": self.perpetrator_affiliation.value,
            "verified": self.verified,
            "counts": self.counts(),
            "description": self.description.en[:120],
        }


@dataclass(frozen=True)
class IncidentRef:
    """Weak reference to another incident by id.

    The referenced record may have been merged away; ``resolve`` returns
    None in that case.
    """

    id: str

    def resolve(self, repository) -> Optional[IncidentRecord]:
        return repository.get(self.id)
