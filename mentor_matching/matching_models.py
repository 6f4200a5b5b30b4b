# pydantic models for matching results and explanation caching
from datetime import datetime, timezone
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

MatchingMode = Literal["batch", "top3_per_mentee"]


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def pair_key(mentee_id: str, mentor_id: str) -> str:
    """Stable string key for a (mentee, mentor) pair."""
    return f"{mentee_id}::{mentor_id}"


class MatchLogistics(BaseModel):
    model_config = ConfigDict(frozen=True)

    timezone_mentee: Optional[str] = None
    timezone_mentor: Optional[str] = None
    languages_shared: List[str] = Field(default_factory=list)
    capacity_remaining: Optional[int] = None


class MatchScore(BaseModel):
    """Scored, explained outcome of comparing one mentee to one mentor.

    Fields:
        total_score: Weighted mean of the available sub-scores, in [0, 100].
        reasons: Positive signals, most significant first.
        risks: Concerns, most significant first.
        sub_scores: Named 0-100 sub-scores that had signal for this pair.
        shared_topics: Topics the mentee wants that the mentor offers.
        icebreaker: Suggested first conversation topic.
        logistics: Timezones, shared languages and mentor capacity.
        is_embedding_based: True when semantic similarity came from embeddings.
    """

    model_config = ConfigDict(frozen=True)

    total_score: float = Field(..., ge=0.0, le=100.0)
    reasons: List[str] = Field(default_factory=list)
    risks: List[str] = Field(default_factory=list)
    sub_scores: Dict[str, float] = Field(default_factory=dict)
    shared_topics: List[str] = Field(default_factory=list)
    icebreaker: Optional[str] = None
    logistics: MatchLogistics = Field(default_factory=MatchLogistics)
    is_embedding_based: bool = False


class MatchRecommendation(BaseModel):
    """One candidate mentor for a mentee."""

    model_config = ConfigDict(frozen=True)

    mentor_id: str
    mentor_name: str
    mentor_role: Optional[str] = None
    score: MatchScore


class ProposedAssignment(BaseModel):
    model_config = ConfigDict(frozen=True)

    mentor_id: str
    mentor_name: str


class MatchingResult(BaseModel):
    """Per-mentee outcome. `proposed_assignment` is only populated in batch mode."""

    model_config = ConfigDict(frozen=True)

    mentee_id: str
    mentee_name: str
    recommendations: List[MatchRecommendation] = Field(default_factory=list)
    proposed_assignment: Optional[ProposedAssignment] = None


class MatchingStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    mentees_total: int = 0
    mentors_total: int = 0
    pairs_evaluated: int = Field(default=0, description="All mentee x mentor combinations before filtering")
    after_filters: int = Field(default=0, description="Eligible pairs actually scored")


class MatchingOutput(BaseModel):
    """Result of one matching run, ready for JSON serialization by the caller."""

    model_config = ConfigDict(frozen=True)

    mode: MatchingMode
    results: List[MatchingResult] = Field(default_factory=list)
    stats: MatchingStats = Field(default_factory=MatchingStats)
    timestamp: str = Field(default_factory=utc_now_iso)


class MatchingHistoryEntry(BaseModel):
    """Compact summary of a run, for a cohort's matching history."""

    timestamp: str
    mode: MatchingMode
    stats: MatchingStats
    launched: bool = False
    matches_count: int = 0
    average_score: float = 0.0


class ExplanationCacheEntry(BaseModel):
    """Cached explanation for one pair. Entries are never overwritten."""

    model_config = ConfigDict(frozen=True)

    cohort_id: str
    mentee_id: str
    mentor_id: str
    explanation: str
    model: str
    total_score: float
    created_at: str = Field(default_factory=utc_now_iso)

    @property
    def key(self) -> str:
        return pair_key(self.mentee_id, self.mentor_id)


class PotentialMentee(BaseModel):
    """A mentee who listed the mentor among their recommendations."""

    model_config = ConfigDict(frozen=True)

    mentee_id: str
    mentee_name: str
    score: MatchScore
    rank_for_this_mentee: int = Field(..., ge=1, description="1 = the mentee's top choice")


class MentorCentricMatch(BaseModel):
    model_config = ConfigDict(frozen=True)

    mentor_id: str
    mentor_name: str
    mentor_role: Optional[str] = None
    location_timezone: Optional[str] = None
    capacity_remaining: int = 0
    potential_mentees: List[PotentialMentee] = Field(default_factory=list)
