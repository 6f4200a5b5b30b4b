"""Human review helpers on top of a MatchingOutput.

- `to_mentor_centric`: pivot per-mentee recommendations into per-mentor lists.
- `SelectionIndex`: manual picks, kept consistent in both directions and
  never above a mentor's capacity.
- `summarize_for_history`: compact record of a run for a cohort's history.
"""

from __future__ import annotations

from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Set

from .data_models import Mentor
from .errors import CapacityExceededError, SelectionError
from .matching_models import (
    MatchingHistoryEntry,
    MatchingOutput,
    MentorCentricMatch,
    PotentialMentee,
)


def to_mentor_centric(output: MatchingOutput, mentors: Sequence[Mentor]) -> List[MentorCentricMatch]:
    """Pivot mentee-centric recommendations into one entry per mentor.

    Every known mentor gets an entry, even with no potential mentees. Mentees
    within an entry are ordered by score (descending). Entries are ordered by
    number of potential mentees (descending), then by mentor name.
    """
    entries: Dict[str, dict] = {}
    for mentor in mentors:
        entries.setdefault(mentor.id, {
            "mentor_id": mentor.id,
            "mentor_name": mentor.display_name,
            "mentor_role": mentor.role,
            "location_timezone": mentor.location_timezone,
            "capacity_remaining": mentor.capacity_remaining,
            "potential_mentees": [],
        })

    for result in output.results:
        for rank, rec in enumerate(result.recommendations, start=1):
            entry = entries.get(rec.mentor_id)
            if entry is None:
                # recommendation for a mentor missing from the roster
                entry = entries[rec.mentor_id] = {
                    "mentor_id": rec.mentor_id,
                    "mentor_name": rec.mentor_name or rec.mentor_id,
                    "mentor_role": rec.mentor_role,
                    "location_timezone": rec.score.logistics.timezone_mentor,
                    "capacity_remaining": rec.score.logistics.capacity_remaining or 0,
                    "potential_mentees": [],
                }
            entry["potential_mentees"].append(
                PotentialMentee(
                    mentee_id=result.mentee_id,
                    mentee_name=result.mentee_name or result.mentee_id,
                    score=rec.score,
                    rank_for_this_mentee=rank,
                )
            )

    matches = []
    for entry in entries.values():
        entry["potential_mentees"].sort(key=lambda p: (-p.score.total_score, p.mentee_id))
        matches.append(MentorCentricMatch(**entry))
    matches.sort(key=lambda m: (-len(m.potential_mentees), m.mentor_name.lower(), m.mentor_id))
    return matches


class SelectionIndex:
    """
    Manual mentee -> mentor selections with a mentor -> mentees reverse index.

    `select` and `deselect` are the only mutation paths; both keep the two
    directions in sync. A mentee has at most one mentor, and a mentor never
    holds more mentees than its capacity.
    """

    def __init__(self, capacities: Mapping[str, int], mentee_ids: Optional[Iterable[str]] = None):
        self._capacities: Dict[str, int] = {k: max(int(v), 0) for k, v in capacities.items()}
        self._mentee_ids: Optional[FrozenSet[str]] = frozenset(mentee_ids) if mentee_ids is not None else None
        self._by_mentee: Dict[str, str] = {}
        self._by_mentor: Dict[str, Set[str]] = {mentor_id: set() for mentor_id in self._capacities}

    @classmethod
    def for_mentors(cls, mentors: Sequence[Mentor], mentee_ids: Optional[Iterable[str]] = None) -> "SelectionIndex":
        return cls({m.id: m.capacity_remaining for m in mentors}, mentee_ids)

    @classmethod
    def from_output(cls, output: MatchingOutput, mentors: Sequence[Mentor]) -> "SelectionIndex":
        """Start from the proposed assignments of a batch run."""
        index = cls.for_mentors(mentors, [r.mentee_id for r in output.results])
        for result in output.results:
            if result.proposed_assignment is not None:
                index.select(result.mentee_id, result.proposed_assignment.mentor_id)
        return index

    def select(self, mentee_id: str, mentor_id: str) -> None:
        """Assign the mentee to the mentor, moving it away from any previous mentor.

        Raises:
            SelectionError: Unknown mentor or mentee.
            CapacityExceededError: The mentor is already full. The index is unchanged.
        """
        if mentor_id not in self._capacities:
            raise SelectionError(f"Unknown mentor {mentor_id}")
        if self._mentee_ids is not None and mentee_id not in self._mentee_ids:
            raise SelectionError(f"Unknown mentee {mentee_id}")
        if self._by_mentee.get(mentee_id) == mentor_id:
            return
        if len(self._by_mentor[mentor_id]) >= self._capacities[mentor_id]:
            raise CapacityExceededError(mentor_id, self._capacities[mentor_id])

        previous = self._by_mentee.get(mentee_id)
        if previous is not None:
            self._by_mentor[previous].discard(mentee_id)
        self._by_mentee[mentee_id] = mentor_id
        self._by_mentor[mentor_id].add(mentee_id)

    def deselect(self, mentee_id: str) -> Optional[str]:
        """Drop the mentee's selection. Returns the mentor it was assigned to, if any."""
        mentor_id = self._by_mentee.pop(mentee_id, None)
        if mentor_id is not None:
            self._by_mentor[mentor_id].discard(mentee_id)
        return mentor_id

    def toggle(self, mentee_id: str, mentor_id: str) -> bool:
        """Select, or deselect when the pair is already selected. Returns the new state."""
        if self._by_mentee.get(mentee_id) == mentor_id:
            self.deselect(mentee_id)
            return False
        self.select(mentee_id, mentor_id)
        return True

    def mentor_of(self, mentee_id: str) -> Optional[str]:
        return self._by_mentee.get(mentee_id)

    def mentees_of(self, mentor_id: str) -> FrozenSet[str]:
        return frozenset(self._by_mentor.get(mentor_id, ()))

    def remaining_capacity(self, mentor_id: str) -> int:
        if mentor_id not in self._capacities:
            raise SelectionError(f"Unknown mentor {mentor_id}")
        return self._capacities[mentor_id] - len(self._by_mentor[mentor_id])

    def assignments(self) -> Dict[str, str]:
        """mentee_id -> mentor_id, ordered by mentee id."""
        return dict(sorted(self._by_mentee.items()))

    def __len__(self) -> int:
        return len(self._by_mentee)

    def __contains__(self, mentee_id: object) -> bool:
        return mentee_id in self._by_mentee


def summarize_for_history(output: MatchingOutput, launched: bool = False) -> MatchingHistoryEntry:
    """History record for a run. `average_score` averages each mentee's top recommendation."""
    top_scores = [r.recommendations[0].score.total_score for r in output.results if r.recommendations]
    average = round(sum(top_scores) / len(top_scores), 2) if top_scores else 0.0
    return MatchingHistoryEntry(
        timestamp=output.timestamp,
        mode=output.mode,
        stats=output.stats,
        launched=launched,
        matches_count=len(output.results),
        average_score=average,
    )
