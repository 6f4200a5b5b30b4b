from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Tuple, Union

import pandas as pd
from pydantic import ValidationError

from .data_models import Mentee, Mentor, participant_adapter
from .matching_models import MatchingOutput

ParticipantKind = Literal["mentee", "mentor"]

# Capacity assumed for a mentor when the export has no capacity column
DEFAULT_MENTOR_CAPACITY = 3

FIELD_ALIASES: Dict[str, List[str]] = {
    "id": ["id", "#", "Respondent ID", "Participant ID", "participant_id"],
    "name": ["name", "Name", "Your name", "Full name"],
    "role": ["role", "What's your current role at Mews?", "Current role", "Role"],
    "experience_years": ["experience_years", "How many years of work experience do you have?"],
    "seniority_band": ["seniority_band", "Seniority", "Level"],
    "location_timezone": [
        "location_timezone",
        "Where are you based (location/time zone)?",
        "Where are you based?",
        "Time zone",
        "Timezone",
    ],
    "department": ["department", "Department", "Team"],
    "languages": ["languages", "Languages"],
    "life_experiences": ["life_experiences"],
    "motivation": ["motivation", "Why would you like to join the mentorship program?"],
    "expectations": ["expectations", "What expectations do you have for the mentorship program?"],
    "meeting_frequency": [
        "meeting_frequency",
        "How often would you ideally like to meet with a mentor?",
        "How often would you ideally like to meet with a mentee?",
    ],
    # mentee
    "topics_to_learn": ["topics_to_learn", "What topics would you like to develop?"],
    "goals_text": ["goals_text", "Goals"],
    "main_reason": ["main_reason", "What's the main reason you'd like a mentor?"],
    "desired_qualities": ["desired_qualities", "What qualities would you like in a mentor?"],
    "preferred_mentor_style": ["preferred_mentor_style", "What kind of mentor style would suit you best?"],
    "preferred_mentor_energy": ["preferred_mentor_energy", "What kind of mentor energy would help you thrive?"],
    "feedback_preference": ["feedback_preference", "How do you prefer to receive feedback?"],
    # mentor
    "topics_to_mentor": ["topics_to_mentor", "What topics would you feel comfortable mentoring on?"],
    "topics_not_to_mentor": ["topics_not_to_mentor", "Are there any topics you would prefer NOT to mentor on?"],
    "excluded_roles": ["excluded_roles"],
    "preferred_mentee_levels": ["preferred_mentee_levels", "Which mentee levels would you prefer to mentor?"],
    "bio_text": ["bio_text", "Bio", "Tell us a bit about yourself"],
    "mentoring_style": ["mentoring_style", "How would you describe your preferred mentoring style?"],
    "mentor_energy": ["mentor_energy", "How would you describe your energy as a mentor?"],
    "feedback_style": ["feedback_style", "What's your feedback style?"],
    "capacity_remaining": ["capacity_remaining", "capacity", "How many mentees can you take on?"],
}

# Survey exports encode multi-choice questions as one column per option,
# non-empty (and not "0") when ticked.
TOPIC_COLUMNS: List[str] = [
    "Career growth & progression",
    "Leadership & management",
    "Technical / product knowledge",
    "Customer success & client relationships",
    "Communication & soft skills",
    "Cross-functional collaboration",
    "Strategic thinking & vision",
    "Change management / navigating transformation",
    "Diversity, equity & inclusion",
    "Work-life balance & wellbeing",
]

LIFE_EXPERIENCE_COLUMNS: List[str] = [
    "Returning from maternity/paternity/parental leave",
    "Navigating menopause or andropause",
    "Career break / sabbatical",
    "Relocation to a new country",
    "Career change or industry switch",
    "Managing health challenges (physical or mental)",
    "Stepping into leadership for the first time",
    "Working towards a promotion",
    "Thinking about an internal move",
]


def _normalize_header(col: Any) -> Any:
    if not isinstance(col, str):
        return col
    return " ".join(col.replace("–", "-").replace("—", "-").split())


def get_alias_column(df: pd.DataFrame, key: str) -> Optional[str]:
    for candidate in FIELD_ALIASES.get(key, []):
        if candidate in df.columns:
            return candidate
    return None


def resolve_aliases(df: pd.DataFrame) -> Dict[str, Optional[str]]:
    return {key: get_alias_column(df, key) for key in FIELD_ALIASES}


def clean_survey_df(df: pd.DataFrame) -> pd.DataFrame:
    """Normalize headers and text cells; empty or NaN-like cells become None."""
    out = df.copy()
    out.columns = pd.Index([_normalize_header(c) for c in out.columns])
    for col in out.columns:
        # text columns are "object" or, with the pandas string dtype, "str"
        if pd.api.types.is_object_dtype(out[col]) or pd.api.types.is_string_dtype(out[col]):
            out[col] = (
                out[col]
                .astype(str)
                .str.replace(r"\s+", " ", regex=True)
                .str.strip()
                .replace({"nan": None, "None": None, "NaN": None, "<NA>": None, "": None})
            )
    return out.astype(object).where(out.notna(), None)


def _ticked(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, (int, float)):
        return value == value and value != 0
    text = str(value).strip()
    return bool(text) and text.lower() not in {"0", "0.0", "false", "no"}


def _ticked_options(row: Dict[str, Any], options: List[str]) -> List[str]:
    return [opt for opt in options if _ticked(row.get(opt))]


def records_from_frame(df: pd.DataFrame, kind: ParticipantKind) -> List[Dict[str, Any]]:
    """Map survey/CSV columns to participant field names, one dict per row."""
    alias_map = resolve_aliases(df)
    topic_field = "topics_to_learn" if kind == "mentee" else "topics_to_mentor"
    records = []
    for row in df.to_dict(orient="records"):
        record: Dict[str, Any] = {"kind": kind}
        for field, col in alias_map.items():
            if col is not None and row.get(col) is not None:
                record[field] = row[col]

        if topic_field not in record:
            ticked = _ticked_options(row, TOPIC_COLUMNS)
            if ticked:
                record[topic_field] = ticked
        if "life_experiences" not in record:
            ticked = _ticked_options(row, LIFE_EXPERIENCE_COLUMNS)
            if ticked:
                record["life_experiences"] = ticked

        if kind == "mentor" and alias_map.get("capacity_remaining") is None:
            record["capacity_remaining"] = DEFAULT_MENTOR_CAPACITY
        records.append(record)
    return records


def _read_json_records(path: Path, kind: ParticipantKind) -> List[Dict[str, Any]]:
    raw = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(raw, dict):
        raw = raw.get(f"{kind}s", [])
    if not isinstance(raw, list):
        raise ValueError(f"{path}: expected a JSON list of {kind} records")
    return raw


def validate_records(
    records: List[Any], kind: ParticipantKind
) -> Tuple[List[Union[Mentee, Mentor]], List[str]]:
    """Validate raw records; invalid ones are skipped and described in the warnings."""
    participants: List[Union[Mentee, Mentor]] = []
    warnings: List[str] = []
    for i, record in enumerate(records, start=1):
        if not isinstance(record, dict):
            warnings.append(f"{kind} record {i}: not an object, skipped")
            continue
        record_id = record.get("id")
        if record_id is None or (isinstance(record_id, float) and pd.isna(record_id)) or not str(record_id).strip():
            warnings.append(f"{kind} record {i}: missing id, skipped")
            continue
        try:
            participants.append(participant_adapter.validate_python({**record, "kind": kind}))
        except ValidationError as e:
            problems = "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors())
            warnings.append(f"{kind} record {i} ({record_id}): {problems}, skipped")
    return participants, warnings


def load_participants(path: Path, kind: ParticipantKind) -> Tuple[List[Union[Mentee, Mentor]], List[str]]:
    """Load mentees or mentors from a CSV export or a JSON list.

    Args:
        path: `.json` file (list of records, or {"mentees": [...]}/{"mentors": [...]})
            or any other extension read as CSV.
        kind: "mentee" or "mentor".

    Returns:
        (participants, warnings). Records missing an id or failing validation
        are skipped with a warning rather than aborting the load.
    """
    path = Path(path)
    if path.suffix.lower() == ".json":
        records = _read_json_records(path, kind)
    else:
        # every cell as text: ids like "007" must not become 7
        records = records_from_frame(clean_survey_df(pd.read_csv(path, dtype=str)), kind)
    return validate_records(records, kind)


def load_matching_output(path: Path) -> MatchingOutput:
    return MatchingOutput.model_validate_json(Path(path).read_text(encoding="utf-8"))
