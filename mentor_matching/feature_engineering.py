from __future__ import annotations

import re
from typing import Dict, FrozenSet, Iterable, Optional, Sequence, Union

from .data_models import FeatureSet, Mentee, Mentor

seniority_levels: Dict[str, int] = {
    "IC1": 1,
    "IC2": 2,
    "IC3": 3,
    "IC4": 4,
    "IC5": 5,
    "M1": 6,
    "M2": 7,
}

# Survey answers for "How many years of work experience do you have?"
experience_bands: Dict[str, str] = {
    "10+": "IC4",
    "6-10": "IC3",
    "3-5": "IC2",
    "0-2": "IC1",
}

timezone_offsets: Dict[str, float] = {
    "central europe (cet)": 1,
    "uk / ireland (gmt)": 0,
    "us - pacific time (pst)": -8,
    "us - central time (cst)": -6,
    "us - eastern time (est)": -5,
    "australia (aest)": 10,
}

timezone_abbreviations: Dict[str, float] = {
    "utc": 0, "gmt": 0, "wet": 0, "bst": 1, "cet": 1, "cest": 2, "eet": 2,
    "eest": 3, "msk": 3, "gst": 4, "ist": 5.5, "sgt": 8, "hkt": 8, "jst": 9,
    "aest": 10, "aedt": 11, "nzst": 12, "est": -5, "edt": -4, "cst": -6,
    "cdt": -5, "mst": -7, "mdt": -6, "pst": -8, "pdt": -7,
}

timezone_places: Dict[str, float] = {
    "central europe": 1, "western europe": 0, "eastern europe": 2,
    "london": 0, "dublin": 0, "lisbon": 0, "prague": 1, "berlin": 1,
    "paris": 1, "amsterdam": 1, "madrid": 1, "barcelona": 1, "budapest": 1,
    "athens": 2, "kyiv": 2, "dubai": 4, "india": 5.5, "singapore": 8,
    "tokyo": 9, "sydney": 10, "melbourne": 10, "auckland": 12,
    "new york": -5, "toronto": -5, "eastern": -5, "chicago": -6,
    "denver": -7, "mountain": -7, "pacific": -8, "san francisco": -8,
}

cadence_order: Dict[str, int] = {
    "weekly": 0,
    "biweekly": 1,
    "monthly": 2,
    "quarterly": 3,
}

# Answers to "What level of mentee do you prefer to work with?"
mentee_level_preferences: Dict[str, FrozenSet[int]] = {
    "early": frozenset({1}),
    "mid": frozenset({2, 3}),
    "senior": frozenset({4, 5, 6, 7}),
}

_DASHES = re.compile(r"[‐-―−]")
_UTC_OFFSET = re.compile(r"\b(?:utc|gmt)\s*([+-])\s*(\d{1,2})(?::?(\d{2}))?")


def _clean_text(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    text = re.sub(r"\s+", " ", _DASHES.sub("-", str(value))).strip()
    if not text or text.lower() in {"nan", "none", "null", "n/a"}:
        return None
    return text


def normalize_tag(tag: str) -> str:
    return re.sub(r"\s+", " ", _DASHES.sub("-", tag)).strip().lower()


def _tag_set(tags: Iterable[str]) -> FrozenSet[str]:
    return frozenset(t for t in (normalize_tag(tag) for tag in tags) if t)


def seniority_from_experience(experience: Optional[str]) -> Optional[str]:
    """Map a free-text experience answer (e.g. "3-5", "10+ years") to a seniority band."""
    text = _clean_text(experience)
    if text is None:
        return None
    s = text.lower().replace(" ", "")
    for years, band in experience_bands.items():
        if re.search(rf"(?<![\d.]){re.escape(years)}(?!\d)", s):
            return band
    m = re.search(r"(\d+(?:\.\d+)?)", s)
    if m:
        years_num = float(m.group(1))
        if years_num >= 10:
            return "IC4"
        if years_num >= 6:
            return "IC3"
        if years_num >= 3:
            return "IC2"
        return "IC1"
    if any(tok in s for tok in ["student", "graduate", "newgrad", "lessthan", "intern"]):
        return "IC1"
    return None


def seniority_band_for(explicit_band: Optional[str], experience: Optional[str]) -> Optional[str]:
    """An explicit, recognised band wins over the one inferred from experience."""
    band = (_clean_text(explicit_band) or "").upper().replace(" ", "")
    if band in seniority_levels:
        return band
    return seniority_from_experience(experience)


def timezone_offset(label: Optional[str]) -> Optional[float]:
    """Best-effort UTC offset (hours) for a timezone or location label; None if unknown."""
    text = _clean_text(label)
    if text is None:
        return None
    s = text.lower()
    if s in timezone_offsets:
        return timezone_offsets[s]
    m = _UTC_OFFSET.search(s)
    if m:
        sign = -1 if m.group(1) == "-" else 1
        minutes = int(m.group(3) or 0)
        return sign * (int(m.group(2)) + minutes / 60.0)
    for token in re.findall(r"[a-z]+", s):
        if token in timezone_abbreviations:
            return timezone_abbreviations[token]
    for place, offset in timezone_places.items():
        if place in s:
            return offset
    return None


def normalize_cadence(frequency: Optional[str]) -> Optional[str]:
    text = _clean_text(frequency)
    if text is None:
        return None
    s = text.lower()
    if any(k in s for k in ["bi-weekly", "biweekly", "fortnight", "every two weeks", "every 2 weeks", "twice a month"]):
        return "biweekly"
    if any(k in s for k in ["weekly", "every week", "once a week"]):
        return "weekly"
    if "quarter" in s:
        return "quarterly"
    if any(k in s for k in ["monthly", "every month", "once a month"]):
        return "monthly"
    return None


def _join_parts(parts: Sequence[Optional[str]]) -> str:
    return ". ".join(p for p in (_clean_text(part) for part in parts) if p)


def preferred_levels(labels: Iterable[str]) -> FrozenSet[int]:
    """Seniority levels a mentor prefers to mentor. "No preference" and unknown answers add nothing."""
    levels: set = set()
    for label in labels:
        s = normalize_tag(label)
        for keyword, band_levels in mentee_level_preferences.items():
            if keyword in s:
                levels.update(band_levels)
    return frozenset(levels)


def build_profile_text(participant: Union[Mentee, Mentor]) -> str:
    """Concatenate the semantically meaningful free-text fields of a profile.

    The same text feeds both the embedding provider and the keyword fallback,
    so the two similarity paths compare the same evidence.
    """
    life = ", ".join(participant.life_experiences)
    if isinstance(participant, Mentor):
        topics = ", ".join(participant.topics_to_mentor)
        return _join_parts([
            participant.bio_text,
            participant.motivation,
            participant.expectations,
            f"Topics: {topics}" if topics else None,
            f"Style: {participant.mentoring_style}" if participant.mentoring_style else None,
            f"Life experiences: {life}" if life else None,
        ])
    topics = ", ".join(participant.topics_to_learn)
    return _join_parts([
        participant.goals_text,
        participant.main_reason,
        participant.motivation,
        participant.expectations,
        f"Topics: {topics}" if topics else None,
        participant.desired_qualities,
        f"Preferred style: {participant.preferred_mentor_style}" if participant.preferred_mentor_style else None,
        f"Life experiences: {life}" if life else None,
    ])


def normalize(participant: Union[Mentee, Mentor]) -> FeatureSet:
    """
    Turn a mentee or mentor record into a comparable FeatureSet.

    Never raises for partially-filled profiles: anything missing or
    unrecognisable becomes None / an empty set, which the scoring engine
    treats as "no signal" for the corresponding sub-score.

    Args:
        participant: A validated Mentee or Mentor.

    Returns:
        FeatureSet: Normalized features plus the profile text used for similarity.
    """
    band = seniority_band_for(participant.seniority_band, participant.experience_years)
    common = dict(
        participant_id=participant.id,
        kind=participant.kind,
        name=participant.display_name,
        role=_clean_text(participant.role),
        seniority_band=band,
        seniority_level=seniority_levels.get(band) if band else None,
        timezone_label=_clean_text(participant.location_timezone),
        tz_offset=timezone_offset(participant.location_timezone),
        cadence=normalize_cadence(participant.meeting_frequency),
        life_experiences=_tag_set(participant.life_experiences),
        languages=_tag_set(participant.languages),
        profile_text=build_profile_text(participant),
    )

    if isinstance(participant, Mentor):
        return FeatureSet(
            **common,
            topics=_tag_set(participant.topics_to_mentor),
            topic_labels=list(participant.topics_to_mentor),
            excluded_topics=_tag_set(participant.topics_not_to_mentor),
            excluded_roles=_tag_set(participant.excluded_roles),
            style=_clean_text(participant.mentoring_style),
            energy=_clean_text(participant.mentor_energy),
            feedback=_clean_text(participant.feedback_style),
            preferred_levels=preferred_levels(participant.preferred_mentee_levels),
            capacity=participant.capacity_remaining,
        )

    return FeatureSet(
        **common,
        topics=_tag_set(participant.topics_to_learn),
        topic_labels=list(participant.topics_to_learn),
        style=_clean_text(participant.preferred_mentor_style),
        energy=_clean_text(participant.preferred_mentor_energy),
        feedback=_clean_text(participant.feedback_preference),
    )
