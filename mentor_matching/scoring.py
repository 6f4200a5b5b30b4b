from __future__ import annotations

import re
from typing import Dict, FrozenSet, List, Optional, Tuple

from .config import ScoreThresholds, ScoreWeights
from .data_models import FeatureSet
from .feature_engineering import cadence_order, normalize_tag
from .matching_models import MatchLogistics, MatchScore

_STOP_WORDS = frozenset(
    "about also and been being from have into just like more most other over some such than that "
    "their them then there these they this those through want what when where which while with "
    "would your topics style life experiences".split()
)

# survey filler that says nothing about the style itself
_STYLE_STOP_WORDS = _STOP_WORDS | frozenset("energy feedback mentor mentoring mentee prefer preferred".split())

PEER_LEVEL_RISK = "May be peer-level rather than senior"


def topic_overlap(mentee: FeatureSet, mentor: FeatureSet) -> float:
    """Jaccard overlap of desired vs offered topics, 0-100. No topics scores 0."""
    if not mentee.topics or not mentor.topics:
        return 0.0
    shared = mentee.topics & mentor.topics
    union = mentee.topics | mentor.topics
    return 100.0 * len(shared) / len(union)


def seniority_fit(mentee_level: Optional[int], mentor_level: Optional[int]) -> Optional[float]:
    if mentee_level is None or mentor_level is None:
        return None
    gap = mentor_level - mentee_level
    if gap < 0:
        return 10.0
    if gap == 0:
        return 50.0
    if gap == 1:
        return 100.0
    if gap == 2:
        return 80.0
    if gap == 3:
        return 30.0
    return 20.0


def timezone_fit(mentee_offset: Optional[float], mentor_offset: Optional[float]) -> Optional[float]:
    if mentee_offset is None or mentor_offset is None:
        return None
    diff = abs(mentee_offset - mentor_offset)
    # offsets wrap around the date line
    diff = min(diff, 24 - diff)
    if diff == 0:
        return 100.0
    if diff <= 1:
        return 90.0
    if diff <= 2:
        return 75.0
    if diff <= 4:
        return 50.0
    if diff <= 6:
        return 30.0
    return 10.0


def cadence_fit(mentee_cadence: Optional[str], mentor_cadence: Optional[str]) -> Optional[float]:
    if mentee_cadence is None or mentor_cadence is None:
        return None
    steps = abs(cadence_order[mentee_cadence] - cadence_order[mentor_cadence])
    if steps == 0:
        return 100.0
    if steps == 1:
        return 60.0
    return 25.0


def level_preference_fit(mentee_level: Optional[int], preferred: FrozenSet[int]) -> Optional[float]:
    if mentee_level is None or not preferred:
        return None
    return 100.0 if mentee_level in preferred else 25.0


def _keywords(text: str, stop_words: FrozenSet[str] = _STOP_WORDS) -> set:
    return {w for w in re.findall(r"[a-z0-9]+", text.lower()) if len(w) > 3 and w not in stop_words}


def keyword_overlap(a_text: str, b_text: str) -> Optional[float]:
    """Keyword overlap coefficient between two free-text profiles, 0-100.

    Used when no similarity score is available for a pair. Returns None when
    either side has no usable keywords.
    """
    a = _keywords(a_text or "")
    b = _keywords(b_text or "")
    if not a or not b:
        return None
    return 100.0 * len(a & b) / min(len(a), len(b))


def style_fit(mentee: FeatureSet, mentor: FeatureSet) -> Optional[float]:
    """Mean keyword overlap of wanted vs offered style, energy and feedback, 0-100.

    Only dimensions answered on both sides count. None when there are none.
    """
    overlaps = []
    for wanted, offered in (
        (mentee.style, mentor.style),
        (mentee.energy, mentor.energy),
        (mentee.feedback, mentor.feedback),
    ):
        a = _keywords(wanted or "", _STYLE_STOP_WORDS)
        b = _keywords(offered or "", _STYLE_STOP_WORDS)
        if a and b:
            overlaps.append(100.0 * len(a & b) / min(len(a), len(b)))
    if not overlaps:
        return None
    return sum(overlaps) / len(overlaps)


def is_eligible(mentee: FeatureSet, mentor: FeatureSet) -> bool:
    """Hard constraints only. Everything else is a soft signal in the score."""
    if (mentor.capacity or 0) <= 0:
        return False
    if mentor.excluded_topics and mentee.topics & mentor.excluded_topics:
        return False
    if mentor.excluded_roles and mentee.role and normalize_tag(mentee.role) in mentor.excluded_roles:
        return False
    return True


class ScoringEngine:
    """
    Computes a MatchScore for a mentee/mentor pair.

    Each sub-score is 0-100. Sub-scores without signal (a field missing on
    either side) are left out and their weight drops out of the weighted
    mean, so partially-filled profiles stay scorable. Topic overlap is always
    scored. The engine is pure: the same features and semantic score always
    give the same MatchScore.
    """

    def __init__(self, weights: Optional[ScoreWeights] = None, thresholds: Optional[ScoreThresholds] = None):
        self.weights = weights or ScoreWeights()
        self.thresholds = thresholds or ScoreThresholds()

    def sub_scores(
        self, mentee: FeatureSet, mentor: FeatureSet, semantic: Optional[float] = None
    ) -> Dict[str, float]:
        if semantic is None:
            semantic = keyword_overlap(mentee.profile_text, mentor.profile_text)
        raw = {
            "topic_overlap": topic_overlap(mentee, mentor),
            "seniority_fit": seniority_fit(mentee.seniority_level, mentor.seniority_level),
            "timezone_fit": timezone_fit(mentee.tz_offset, mentor.tz_offset),
            "cadence_fit": cadence_fit(mentee.cadence, mentor.cadence),
            "style_fit": style_fit(mentee, mentor),
            "level_preference": level_preference_fit(mentee.seniority_level, mentor.preferred_levels),
            "semantic_similarity": semantic,
        }
        return {name: round(min(100.0, max(0.0, float(v))), 2) for name, v in raw.items() if v is not None}

    def score(
        self,
        mentee: FeatureSet,
        mentor: FeatureSet,
        semantic: Optional[float] = None,
        embedding_based: bool = False,
    ) -> MatchScore:
        subs = self.sub_scores(mentee, mentor, semantic)
        weights = self.weights.as_dict()

        weight_total = sum(weights[name] for name in subs)
        if weight_total <= 0:
            total = 0.0
        else:
            total = sum(weights[name] * value for name, value in subs.items()) / weight_total
        total = round(min(100.0, max(0.0, total)), 2)

        shared = [label for label in mentee.topic_labels if normalize_tag(label) in mentor.topics]
        shared = list(dict.fromkeys(shared))
        shared_life = sorted(mentee.life_experiences & mentor.life_experiences)
        reasons, risks = self._explain(mentee, mentor, subs, shared)

        return MatchScore(
            total_score=total,
            reasons=reasons,
            risks=risks,
            sub_scores=subs,
            shared_topics=shared,
            icebreaker=self._icebreaker(shared, shared_life),
            logistics=MatchLogistics(
                timezone_mentee=mentee.timezone_label,
                timezone_mentor=mentor.timezone_label,
                languages_shared=sorted(mentee.languages & mentor.languages),
                capacity_remaining=mentor.capacity,
            ),
            is_embedding_based=embedding_based and "semantic_similarity" in subs,
        )

    @staticmethod
    def _icebreaker(shared: List[str], shared_life: List[str]) -> str:
        if shared:
            return f"Discuss shared interest in {shared[0]}"
        if shared_life:
            return f"Compare notes on {shared_life[0]}"
        return "Explore complementary experiences and goals"

    def _explain(
        self,
        mentee: FeatureSet,
        mentor: FeatureSet,
        subs: Dict[str, float],
        shared: List[str],
    ) -> Tuple[List[str], List[str]]:
        weights = self.weights.as_dict()
        reasons: List[Tuple[float, str]] = []
        risks: List[Tuple[float, str]] = []

        for name, value in subs.items():
            if value >= self.thresholds.reason:
                reasons.append((weights[name] * value, self._reason_text(name, shared)))
            elif value < self.thresholds.risk:
                risks.append((weights[name] * (100.0 - value), self._risk_text(name, mentee, mentor)))

        # same band is a moderate score but always worth flagging
        if "seniority_fit" in subs and mentee.seniority_level == mentor.seniority_level:
            if PEER_LEVEL_RISK not in [text for _, text in risks]:
                risks.append((weights["seniority_fit"] * (100.0 - subs["seniority_fit"]), PEER_LEVEL_RISK))

        # stable sort: ties keep the fixed sub-score order
        reasons.sort(key=lambda r: -r[0])
        risks.sort(key=lambda r: -r[0])
        return [text for _, text in reasons], [text for _, text in risks]

    @staticmethod
    def _reason_text(name: str, shared: List[str]) -> str:
        if name == "topic_overlap":
            preview = ", ".join(shared[:3])
            return f"{len(shared)} shared development areas ({preview})" if shared else "Shared development areas"
        return {
            "seniority_fit": "Appropriate seniority gap",
            "timezone_fit": "Compatible timezone",
            "cadence_fit": "Matching meeting cadence",
            "style_fit": "Compatible mentoring style",
            "level_preference": "Mentee is at a level the mentor prefers",
            "semantic_similarity": "Aligned goals and expertise",
        }[name]

    @staticmethod
    def _risk_text(name: str, mentee: FeatureSet, mentor: FeatureSet) -> str:
        if name == "topic_overlap":
            return "Limited topic overlap"
        if name == "seniority_fit":
            if mentor.seniority_level == mentee.seniority_level:
                return PEER_LEVEL_RISK
            if (mentor.seniority_level or 0) < (mentee.seniority_level or 0):
                return "Mentor is less senior than mentee"
            return "Large seniority gap"
        if name == "timezone_fit":
            diff = abs((mentee.tz_offset or 0.0) - (mentor.tz_offset or 0.0))
            diff = min(diff, 24 - diff)
            return f"Timezone difference of {diff:g}h"
        if name == "cadence_fit":
            return f"Different meeting cadence ({mentee.cadence} vs {mentor.cadence})"
        if name == "style_fit":
            return "Different mentoring style preferences"
        if name == "level_preference":
            return "Mentee level is outside the mentor's preference"
        return "Limited alignment between goals and mentor profile"
