"""Record schemas for apiaries, hives, inspections, tasks and sharing."""

import time
import uuid
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Iterable, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

SCHEMA_VERSION = 2

# Owning apiary of records that live in the device-local store
LOCAL_APIARY = "local"

RecordId = Union[int, str]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_local_id(existing: Iterable[RecordId] = ()) -> int:
    """Millisecond timestamp id, bumped past any existing numeric id."""
    candidate = int(time.time() * 1000)
    numeric = [i for i in existing if isinstance(i, int)]
    if numeric and candidate <= max(numeric):
        candidate = max(numeric) + 1
    return candidate


def new_remote_id() -> str:
    return str(uuid.uuid4())


def is_local_id(record_id: RecordId) -> bool:
    return isinstance(record_id, int) and not isinstance(record_id, bool)


class HiveStatus(str, Enum):
    """Health classification shown for a hive."""

    NEW = "new"
    EXCELLENT = "excellent"
    GOOD = "good"
    WARNING = "warning"
    CRITICAL = "critical"


class Population(str, Enum):
    STRONG = "Stark"
    MEDIUM = "Medel"
    WEAK = "Svag"


class MiteLevel(str, Enum):
    LOW = "lågt"
    NORMAL = "normalt"
    HIGH = "högt"


class Temperament(str, Enum):
    CALM = "Lugn"
    NORMAL = "Normal"
    AGGRESSIVE = "Aggressiv"


class TaskPriority(str, Enum):
    LOW = "låg"
    MEDIUM = "medel"
    HIGH = "hög"

    @classmethod
    def parse(cls, value: str) -> "TaskPriority":
        """Accept either the stored value or the English member name."""
        try:
            return cls(value)
        except ValueError:
            return cls[value.upper()]


class MemberRole(str, Enum):
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"


class AccessLevel(str, Enum):
    MEMBER = "member"
    ADMIN = "admin"


class ResourceType(str, Enum):
    APIARY = "apiary"
    HIVE = "hive"


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _date_part(value: Any) -> Any:
    # Older records hold full ISO timestamps where a calendar date is meant
    if isinstance(value, str) and len(value) > 10 and value[10] in "T ":
        return value[:10]
    if isinstance(value, datetime):
        return value.date()
    return value


# --- Records shared by both stores ---


class Record(BaseModel):
    """Base for records persisted in the local store and the remote tables.

    Local JSON uses camelCase keys, remote rows use the snake_case field
    names. Fields listed in ``LOCAL_ONLY`` never reach the remote tables.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
    )

    LOCAL_ONLY: ClassVar[frozenset] = frozenset({"schema_version"})

    schema_version: int = SCHEMA_VERSION

    def to_local(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_local(cls, data: dict):
        return cls.model_validate(data)

    def to_remote(self) -> dict:
        return self.model_dump(mode="json", exclude=set(self.LOCAL_ONLY))

    @classmethod
    def from_remote(cls, row: dict):
        return cls.model_validate(row)


class QueenInfo(BaseModel):
    """Read-only view of the queen fields of a hive."""

    has_queen: Optional[bool] = None
    marked: Optional[bool] = None
    mark_color: Optional[str] = None
    wing_clipped: Optional[bool] = None
    added_date: Optional[date] = None


class Hive(Record):
    id: RecordId
    apiary_id: str = LOCAL_APIARY
    name: str
    location: str = ""
    frames: str = "0/0"  # "brood/total"
    has_queen: Optional[bool] = None
    queen_marked: Optional[bool] = None
    queen_color: Optional[str] = None
    queen_wing_clipped: Optional[bool] = None
    queen_added_date: Optional[date] = None
    is_nucleus: bool = False
    is_wintered: bool = False
    status: HiveStatus = HiveStatus.NEW
    population: Optional[Population] = None
    varroa: Optional[str] = None
    honey: Optional[str] = None
    notes: str = ""
    last_inspection: Optional[date] = None
    created_at: datetime = Field(default_factory=utcnow)
    is_shared: bool = Field(default=False, exclude=True)

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("hive name must not be empty")
        return v

    @field_validator("frames", mode="before")
    @classmethod
    def _normalize_frames(cls, v: Any) -> Any:
        # Version 1 hives stored only the total frame count
        if isinstance(v, int):
            return f"0/{v}"
        if isinstance(v, str) and v.strip().isdigit():
            return f"0/{v.strip()}"
        return v

    @field_validator("frames")
    @classmethod
    def _check_frames(cls, v: str) -> str:
        try:
            brood, total = (int(part) for part in v.split("/"))
        except ValueError:
            raise ValueError(f"frames must look like 'brood/total', got {v!r}")
        if brood < 0 or total < 0 or brood > total:
            raise ValueError("brood frames cannot exceed total frames")
        return f"{brood}/{total}"

    @field_validator("queen_added_date", "last_inspection", mode="before")
    @classmethod
    def _dates(cls, v: Any) -> Any:
        return _date_part(_blank_to_none(v))

    @field_validator("population", "varroa", "honey", "queen_color", mode="before")
    @classmethod
    def _optional_text(cls, v: Any) -> Any:
        return _blank_to_none(v)

    @property
    def brood_frames(self) -> int:
        return int(self.frames.split("/")[0])

    @property
    def total_frames(self) -> int:
        return int(self.frames.split("/")[1])

    @property
    def queen(self) -> QueenInfo:
        return QueenInfo(
            has_queen=self.has_queen,
            marked=self.queen_marked,
            mark_color=self.queen_color,
            wing_clipped=self.queen_wing_clipped,
            added_date=self.queen_added_date,
        )


class InspectionAnalysis(BaseModel):
    """Commentary attached to an inspection."""

    observations: list[str] = []
    recommendations: list[str] = []
    status: HiveStatus = HiveStatus.GOOD
    priority_actions: list[str] = []
    next_inspection_days: int = 14

    model_config = ConfigDict(use_enum_values=True)


class Inspection(Record):
    LOCAL_ONLY: ClassVar[frozenset] = frozenset({"schema_version", "hive"})

    id: RecordId
    hive_id: Optional[RecordId] = None
    hive: str = ""  # hive name at the time of the inspection
    inspector_id: Optional[str] = None
    date: date
    time: Optional[str] = None
    weather: Optional[str] = None
    temperature: Optional[float] = None
    duration: Optional[str] = None
    brood_frames: Optional[int] = Field(default=None, ge=0)
    total_frames: Optional[int] = Field(default=None, ge=0)
    queen_seen: Optional[bool] = None
    temperament: Optional[Temperament] = None
    varroa_count: Optional[float] = Field(default=None, ge=0)
    varroa_days: Optional[float] = None
    varroa_per_day: Optional[float] = None
    varroa_level: Optional[MiteLevel] = None
    observations: list[str] = []
    custom_observation: Optional[str] = None
    notes: str = ""
    is_wintering: bool = False
    winter_feed: Optional[float] = None
    is_varroa_treatment: bool = False
    treatment_type: Optional[str] = None
    new_queen_added: bool = False
    new_queen_marked: Optional[bool] = None
    new_queen_color: Optional[str] = None
    new_queen_wing_clipped: Optional[bool] = None
    rating: Optional[int] = Field(default=None, ge=1, le=5)
    findings: list[str] = []
    ai_analysis: Optional[dict] = None
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("date", mode="before")
    @classmethod
    def _inspection_date(cls, v: Any) -> Any:
        return _date_part(v)

    @field_validator(
        "temperament", "treatment_type", "new_queen_color", "custom_observation",
        mode="before",
    )
    @classmethod
    def _optional_text(cls, v: Any) -> Any:
        return _blank_to_none(v)

    @model_validator(mode="after")
    def _check_frames(self) -> "Inspection":
        if (
            self.brood_frames is not None
            and self.total_frames is not None
            and self.brood_frames > self.total_frames
        ):
            raise ValueError("brood frames cannot exceed total frames")
        return self


class Task(Record):
    LOCAL_ONLY: ClassVar[frozenset] = frozenset({"schema_version", "due_text"})

    id: RecordId
    apiary_id: str = LOCAL_APIARY
    hive_id: Optional[RecordId] = None
    title: str = Field(alias="task")
    due_date: Optional[date] = Field(default=None, alias="date")
    due_text: Optional[str] = None  # free-text due date from older records
    priority: TaskPriority = TaskPriority.MEDIUM
    notes: str = ""
    completed: bool = False
    completed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("title")
    @classmethod
    def _title_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("task title must not be empty")
        return v

    @field_validator("due_date", mode="before")
    @classmethod
    def _due(cls, v: Any) -> Any:
        return _date_part(_blank_to_none(v))

    def to_remote(self) -> dict:
        row = super().to_remote()
        row["description"] = row.pop("notes") or None
        row["status"] = "completed" if row.pop("completed") else "pending"
        return row

    @classmethod
    def from_remote(cls, row: dict) -> "Task":
        data = dict(row)
        data["notes"] = data.pop("description", None) or ""
        data["completed"] = data.pop("status", "pending") == "completed"
        return cls.model_validate(data)


class Harvest(Record):
    id: RecordId
    apiary_id: str = LOCAL_APIARY
    hive_id: RecordId
    hive: str = ""
    date: date
    honey_frames: float = Field(gt=0)
    estimated_kg: float = Field(ge=0)
    notes: str = ""
    created_at: datetime = Field(default_factory=utcnow)


# --- Remote-only records ---


class RemoteRecord(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    def to_remote(self) -> dict:
        return self.model_dump(mode="json", exclude_none=False)


class Profile(RemoteRecord):
    id: str
    user_id: Optional[str] = None
    email: Optional[str] = None
    full_name: Optional[str] = None


class Apiary(RemoteRecord):
    id: str = Field(default_factory=new_remote_id)
    name: str
    description: Optional[str] = None
    location: Optional[str] = None
    owner_id: str
    invite_code: str
    created_at: datetime = Field(default_factory=utcnow)
    # Viewer's effective role, filled by membership queries
    role: Optional[MemberRole] = Field(default=None, exclude=True)


class ApiaryMember(RemoteRecord):
    id: str = Field(default_factory=new_remote_id)
    apiary_id: str
    profile_id: str
    role: MemberRole = MemberRole.MEMBER
    joined_at: datetime = Field(default_factory=utcnow)


class SharingCode(RemoteRecord):
    id: str = Field(default_factory=new_remote_id)
    code: str
    resource_type: ResourceType
    resource_id: str
    created_by: str
    expires_at: Optional[datetime] = None
    max_uses: Optional[int] = Field(default=None, ge=1)
    current_uses: int = 0
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("expires_at")
    @classmethod
    def _expires_in_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        # Naive times are taken to be UTC
        if v is None:
            return v
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or utcnow()) >= self.expires_at

    def is_exhausted(self) -> bool:
        return self.max_uses is not None and self.current_uses >= self.max_uses


class SharedAccess(RemoteRecord):
    id: str = Field(default_factory=new_remote_id)
    sharing_code_id: str
    profile_id: str
    resource_type: ResourceType
    resource_id: str
    access_level: AccessLevel = AccessLevel.MEMBER
    joined_at: datetime = Field(default_factory=utcnow)
