import re
from typing import Annotated, Any, FrozenSet, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

_LIST_SPLIT = re.compile(r"[;,|\n]")


def _coerce_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if value != value:  # NaN from pandas
            return None
        return str(value)
    if isinstance(value, str):
        return value
    return None


def _coerce_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [part.strip() for part in _LIST_SPLIT.split(value) if part.strip()]
    if isinstance(value, (list, tuple, set, frozenset)):
        items = []
        for item in value:
            text = _coerce_text(item)
            if text is not None and text.strip():
                items.append(text.strip())
        return items
    return []


class ParticipantBase(BaseModel):
    """
    Fields every participant provides, whatever their role in the program.

    Records are immutable for the duration of a matching run. Malformed
    optional values degrade to "no signal" instead of failing validation;
    only a missing `id` rejects the record.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str = Field(..., min_length=1)
    name: Optional[str] = None
    role: Optional[str] = None
    experience_years: Optional[str] = None
    seniority_band: Optional[str] = None
    location_timezone: Optional[str] = None
    department: Optional[str] = None
    life_experiences: List[str] = Field(default_factory=list)
    languages: List[str] = Field(default_factory=list)
    motivation: Optional[str] = None
    expectations: Optional[str] = None
    meeting_frequency: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def _strip_id(cls, value: Any) -> Any:
        if isinstance(value, float) and value != value:
            return ""
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            value = str(int(value)) if float(value).is_integer() else str(value)
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator(
        "name",
        "role",
        "experience_years",
        "seniority_band",
        "location_timezone",
        "department",
        "motivation",
        "expectations",
        "meeting_frequency",
        mode="before",
    )
    @classmethod
    def _text(cls, value: Any) -> Optional[str]:
        return _coerce_text(value)

    @field_validator("life_experiences", "languages", mode="before")
    @classmethod
    def _tags(cls, value: Any) -> List[str]:
        return _coerce_list(value)

    @property
    def display_name(self) -> str:
        return (self.name or "").strip() or self.id


class Mentee(ParticipantBase):
    """A participant looking for a mentor."""

    kind: Literal["mentee"] = "mentee"
    topics_to_learn: List[str] = Field(default_factory=list)
    goals_text: Optional[str] = None
    main_reason: Optional[str] = None
    desired_qualities: Optional[str] = None
    preferred_mentor_style: Optional[str] = None
    preferred_mentor_energy: Optional[str] = None
    feedback_preference: Optional[str] = None

    @field_validator("topics_to_learn", mode="before")
    @classmethod
    def _topics(cls, value: Any) -> List[str]:
        return _coerce_list(value)

    @field_validator(
        "goals_text",
        "main_reason",
        "desired_qualities",
        "preferred_mentor_style",
        "preferred_mentor_energy",
        "feedback_preference",
        mode="before",
    )
    @classmethod
    def _mentee_text(cls, value: Any) -> Optional[str]:
        return _coerce_text(value)


class Mentor(ParticipantBase):
    """A participant offering mentorship, with a remaining capacity."""

    kind: Literal["mentor"] = "mentor"
    topics_to_mentor: List[str] = Field(default_factory=list)
    topics_not_to_mentor: List[str] = Field(default_factory=list)
    excluded_roles: List[str] = Field(default_factory=list)
    preferred_mentee_levels: List[str] = Field(default_factory=list)
    bio_text: Optional[str] = None
    mentoring_style: Optional[str] = None
    mentor_energy: Optional[str] = None
    feedback_style: Optional[str] = None
    capacity_remaining: int = Field(default=0, ge=0)

    @field_validator(
        "topics_to_mentor",
        "topics_not_to_mentor",
        "excluded_roles",
        "preferred_mentee_levels",
        mode="before",
    )
    @classmethod
    def _topics(cls, value: Any) -> List[str]:
        return _coerce_list(value)

    @field_validator("bio_text", "mentoring_style", "mentor_energy", "feedback_style", mode="before")
    @classmethod
    def _mentor_text(cls, value: Any) -> Optional[str]:
        return _coerce_text(value)

    @field_validator("capacity_remaining", mode="before")
    @classmethod
    def _capacity(cls, value: Any) -> int:
        # malformed or negative capacity means the mentor cannot take anyone
        try:
            capacity = int(float(value))
        except (TypeError, ValueError, OverflowError):
            return 0
        return max(capacity, 0)


Participant = Annotated[Union[Mentee, Mentor], Field(discriminator="kind")]

participant_adapter: TypeAdapter = TypeAdapter(Participant)


class FeatureSet(BaseModel):
    """Comparable features derived from one participant by the normalizer."""

    model_config = ConfigDict(frozen=True)

    participant_id: str
    kind: Literal["mentee", "mentor"]
    name: str
    role: Optional[str] = None
    seniority_level: Optional[int] = None
    seniority_band: Optional[str] = None
    timezone_label: Optional[str] = None
    tz_offset: Optional[float] = None
    cadence: Optional[str] = None
    topics: FrozenSet[str] = frozenset()
    excluded_topics: FrozenSet[str] = frozenset()
    excluded_roles: FrozenSet[str] = frozenset()
    life_experiences: FrozenSet[str] = frozenset()
    languages: FrozenSet[str] = frozenset()
    style: Optional[str] = None
    energy: Optional[str] = None
    feedback: Optional[str] = None
    preferred_levels: FrozenSet[int] = frozenset()
    profile_text: str = ""
    capacity: Optional[int] = None
    topic_labels: List[str] = Field(default_factory=list)
