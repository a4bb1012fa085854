from __future__ import annotations

import logging
import re
import uuid
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import pandas as pd

from .data_models import (
    AvailabilityTier,
    ExperienceTier,
    NormalizedBatch,
    Participant,
    RejectedRow,
    RejectionReason,
    TeamPreference,
)
from .exceptions import InvalidInputError
from .scoring import FLEXIBLE_ROLE


logger = logging.getLogger(__name__)

# Resolution order matters: specific fields claim their columns before the looser ones.
FIELD_ALIASES: Dict[str, List[str]] = {
    "id": ["participant id", "participant_id", "respondent id", "id"],
    "email": ["email id", "email address", "your email address", "email"],
    "full_name": ["full name", "full_name", "your name", "name"],
    "college_name": ["college name", "college", "institution", "university"],
    "current_year": ["current year of study", "current year", "course", "study year", "year"],
    "core_strengths": [
        "your top 3 core strengths",
        "top 3 core strengths",
        "core strengths",
        "core_strengths",
        "strengths",
        "skills",
    ],
    "preferred_roles": [
        "preferred role(s) in a team",
        "preferred role(s)",
        "preferred roles",
        "preferred_roles",
        "roles",
        "role",
    ],
    "working_style": ["working style preferences", "work style preferences", "working style", "working_style"],
    "availability": [
        "your availability for case comps (next 2–4 weeks)",
        "availability (next 2–4 weeks)",
        "availability (next 2-4 weeks)",
        "availability",
        "available",
    ],
    "experience": [
        "previous case comp experience",
        "previous case competition experience",
        "case experience",
        "experience",
    ],
    "case_preferences": [
        "which type(s) of case competitions are you most interested in?",
        "case comp preferences",
        "case preferences",
        "case_preferences",
        "interests",
    ],
    "preferred_team_size": ["preferred team size", "preferred_team_size", "team size"],
    "team_preference": ["who do you want on your team?", "team preference", "team_preference"],
}

# "id" is a substring of too many headers ("ideal team structure") to match loosely
EXACT_ONLY_FIELDS = {"id"}

CORE_STRENGTH_ALIASES: Dict[str, str] = {
    "research": "Research",
    "modeling": "Modeling",
    "markets": "Markets",
    "design": "Design",
    "pitching": "Pitching",
    "coordination": "Coordination",
    "ideation": "Ideation",
    "product": "Product",
    "storytelling": "Storytelling",
    "technical": "Technical",
    "strategy & structuring": "Research",
    "strategy and structuring": "Research",
    "data analysis & research": "Research",
    "data analysis and research": "Research",
    "financial modeling": "Modeling",
    "market research": "Markets",
    "presentation design (ppt/canva)": "Design",
    "presentation design": "Design",
    "public speaking & pitching": "Pitching",
    "public speaking and pitching": "Pitching",
    "time management & coordination": "Coordination",
    "time management and coordination": "Coordination",
    "innovation & ideation": "Ideation",
    "innovation and ideation": "Ideation",
    "ui/ux or product thinking": "Product",
    "ui/ux": "Product",
    "product thinking": "Product",
    "technical (coding, app dev, automation)": "Technical",
    "coding": "Technical",
}

ROLE_ALIASES: Dict[str, str] = {
    "team lead": "Team Lead",
    "team leader": "Team Lead",
    "leader": "Team Lead",
    "lead": "Team Lead",
    "researcher": "Researcher",
    "data analyst": "Data Analyst",
    "analyst": "Data Analyst",
    "designer": "Designer",
    "presenter": "Presenter",
    "coordinator": "Coordinator",
    "flexible with any role": FLEXIBLE_ROLE,
    "flexible": FLEXIBLE_ROLE,
    "any role": FLEXIBLE_ROLE,
}

CASE_TYPES: Tuple[str, ...] = (
    "Consulting",
    "Product/Tech",
    "Marketing",
    "Social Impact",
    "Operations/Supply Chain",
    "Finance",
    "Public Policy/ESG",
)

CASE_TYPE_ALIASES: Dict[str, str] = {
    "consulting": "Consulting",
    "product/tech": "Product/Tech",
    "product": "Product/Tech",
    "tech": "Product/Tech",
    "technology": "Product/Tech",
    "marketing": "Marketing",
    "social impact": "Social Impact",
    "social": "Social Impact",
    "impact": "Social Impact",
    "operations/supply chain": "Operations/Supply Chain",
    "operations": "Operations/Supply Chain",
    "supply chain": "Operations/Supply Chain",
    "finance": "Finance",
    "financial": "Finance",
    "public policy/esg": "Public Policy/ESG",
    "public policy": "Public Policy/ESG",
    "esg": "Public Policy/ESG",
    "policy": "Public Policy/ESG",
}

TEAM_SIZE_WORDS = {"two": 2, "pair": 2, "three": 3, "trio": 3, "four": 4, "quad": 4, "five": 5, "six": 6}

_SPLIT_RE = re.compile(r"[;,\n]")
_NULL_TOKENS = {"", "nan", "none", "null", "n/a"}


def _norm_header(col: Any) -> str:
    return str(col).strip().lower()


def resolve_aliases(columns: Iterable[Any]) -> Dict[str, Optional[str]]:
    """Map each logical field to one input column, or None.

    Exact (case-insensitive) header matches are resolved first for every field; a
    second pass lets unresolved fields claim a column whose header contains one of
    their aliases, trying the longest aliases of all fields first so a bare "name"
    cannot take "College/University Name" from the college field. A column is never
    claimed twice.
    """
    cols = list(columns)
    normalized = {_norm_header(c): c for c in cols}
    resolved: Dict[str, Optional[str]] = {key: None for key in FIELD_ALIASES}
    claimed: set = set()

    for key, aliases in FIELD_ALIASES.items():
        for alias in aliases:
            col = normalized.get(alias)
            if col is not None and col not in claimed:
                resolved[key] = col
                claimed.add(col)
                break

    loose = [
        (alias, key)
        for key, aliases in FIELD_ALIASES.items()
        if resolved[key] is None and key not in EXACT_ONLY_FIELDS
        for alias in aliases
    ]
    # stable sort: equal lengths keep FIELD_ALIASES order
    for alias, key in sorted(loose, key=lambda item: -len(item[0])):
        if resolved[key] is not None:
            continue
        col = next(
            (c for h, c in normalized.items() if c not in claimed and alias in h),
            None,
        )
        if col is not None:
            resolved[key] = col
            claimed.add(col)
    return resolved


def clean_frame(df: pd.DataFrame) -> pd.DataFrame:
    """Light whitespace cleanup that preserves the original survey schema.

    Missing and empty cells become null; literal answers such as "None" are kept.
    """

    out = df.copy()
    out.columns = [col.strip() if isinstance(col, str) else col for col in out.columns]
    for col in out.columns:
        if pd.api.types.is_object_dtype(out[col]) or pd.api.types.is_string_dtype(out[col]):
            missing = out[col].isna()
            text = (
                out[col]
                .astype(str)
                .str.replace("\n", "; ")
                .str.replace(r"[ \t]+", " ", regex=True)
                .str.strip()
            )
            cleaned = text.astype(object)
            cleaned[missing | (text == "")] = None
            out[col] = cleaned
    return out


def read_frame(csv_path: Union[str, Path]) -> pd.DataFrame:
    df = pd.read_csv(csv_path, dtype=str, keep_default_na=False)
    return clean_frame(df)


def _raw_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and pd.isna(value):
        return ""
    return re.sub(r"\s+", " ", str(value)).strip()


def _text(value: Any) -> str:
    text = _raw_text(value)
    return "" if text.lower() in _NULL_TOKENS else text


def _split_values(value: Any) -> List[str]:
    if isinstance(value, (list, tuple)):
        parts = [_text(v) for v in value]
    else:
        parts = [p.strip() for p in _SPLIT_RE.split(_text(value))]
    return [p for p in parts if p]


def _canonical_tags(value: Any, aliases: Mapping[str, str]) -> Tuple[str, ...]:
    out: List[str] = []
    for part in _split_values(value):
        tag = aliases.get(part.lower(), part)
        if tag not in out:
            out.append(tag)
    return tuple(out)


def parse_core_strengths(value: Any) -> Tuple[str, ...]:
    return _canonical_tags(value, CORE_STRENGTH_ALIASES)


def parse_preferred_roles(value: Any) -> Tuple[str, ...]:
    return _canonical_tags(value, ROLE_ALIASES)


def parse_case_preferences(value: Any) -> Tuple[str, ...]:
    if "open to all" in _text(value).lower():
        return CASE_TYPES
    return _canonical_tags(value, CASE_TYPE_ALIASES)


def parse_working_style(value: Any) -> Tuple[str, ...]:
    return _canonical_tags(value, {})


def parse_availability(value: Any) -> Optional[AvailabilityTier]:
    if isinstance(value, AvailabilityTier):
        return value
    text = _text(value).lower()
    if not text:
        return None
    if any(tok in text for tok in ("not available", "interested later", "busy")):
        return AvailabilityTier.NOT_NOW
    if any(tok in text for tok in ("full", "10–15", "10-15", "high")):
        return AvailabilityTier.FULL
    if any(tok in text for tok in ("moderate", "5–10", "5-10", "medium")):
        return AvailabilityTier.MODERATE
    if any(tok in text for tok in ("light", "1–4", "1-4", "limited", "low")):
        return AvailabilityTier.LIGHT
    return None


def parse_experience(value: Any) -> Optional[ExperienceTier]:
    """Map a free-text answer to a tier; "None" is the survey's zero-experience answer."""
    if isinstance(value, ExperienceTier):
        return value
    text = _raw_text(value).lower()
    if text != "none" and text in _NULL_TOKENS:
        return None
    if not text:
        return None
    if any(tok in text for tok in ("finalist", "winner", "won", "first place")):
        return ExperienceTier.FINALIST
    if any(tok in text for tok in ("3+", "3 or more", "more than 3", "multiple", "many")):
        return ExperienceTier.SEVERAL
    if any(tok in text for tok in ("1–2", "1-2", "1 to 2", "couple", "few")):
        return ExperienceTier.FEW
    if text in ("no", "nil") or any(tok in text for tok in ("none", "never", "first time", "no experience")):
        return ExperienceTier.NONE
    return None


def parse_team_size(value: Any, max_team_size: int = 4) -> Optional[int]:
    """Parse '2', '3 members', 'four' and the like; out-of-range sizes become None."""
    text = _text(value).lower()
    if not text:
        return None
    m = re.search(r"\d+", text)
    if m:
        size: Optional[int] = int(m.group(0))
    else:
        size = next((n for word, n in TEAM_SIZE_WORDS.items() if word in text), None)
    if size is None or size < 2 or size > max_team_size:
        return None
    return size


def parse_team_preference(value: Any) -> TeamPreference:
    if isinstance(value, TeamPreference):
        return value
    text = _text(value).lower()
    if "only" in text:
        if "undergrad" in text or "ug only" in text:
            return TeamPreference.UNDERGRADS_ONLY
        if "postgrad" in text or "pg" in text:
            return TeamPreference.POSTGRADS_ONLY
    return TeamPreference.EITHER


def participant_id_for(email: str) -> str:
    """Stable id derived from the email so re-running an upload keeps the same ids."""
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"mailto:{email.strip().lower()}"))


def normalize_rows(
    rows: Iterable[Mapping[str, Any]],
    max_team_size: int = 4,
) -> NormalizedBatch:
    """Turn raw key/value rows into validated participants.

    Rows without a name or a usable email are rejected, not fatal. When an email
    appears more than once the first occurrence wins and later rows are rejected
    as duplicates.

    Args:
        rows: CSV records or database rows keyed by column header.
        max_team_size: Largest preferred team size accepted; larger values are
            treated as missing.

    Returns:
        NormalizedBatch with participants in input order and the rejected rows.

    Raises:
        InvalidInputError: If ``rows`` is not an iterable of mappings.
    """
    if isinstance(rows, (str, bytes, Mapping)) or not isinstance(rows, Iterable):
        raise InvalidInputError("rows must be an iterable of mappings")
    rows = list(rows)
    for position, row in enumerate(rows, start=1):
        if not isinstance(row, Mapping):
            raise InvalidInputError(f"row {position} is {type(row).__name__}, expected a mapping")

    columns: List[Any] = []
    for row in rows:
        for key in row.keys():
            if key not in columns:
                columns.append(key)
    alias_map = resolve_aliases(columns)

    def _val(row: Mapping[str, Any], key: str) -> Any:
        col = alias_map.get(key)
        return row.get(col) if col is not None else None

    participants: List[Participant] = []
    rejected: List[RejectedRow] = []
    seen_emails: set = set()
    seen_ids: set = set()

    for row_number, row in enumerate(rows, start=1):
        full_name = _text(_val(row, "full_name"))
        email = _text(_val(row, "email"))
        reason: Optional[RejectionReason] = None
        if not full_name:
            reason = RejectionReason.MISSING_NAME
        elif not email:
            reason = RejectionReason.MISSING_EMAIL
        elif "@" not in email:
            reason = RejectionReason.INVALID_EMAIL
        elif email.lower() in seen_emails:
            reason = RejectionReason.DUPLICATE_EMAIL
        if reason is not None:
            rejected.append(RejectedRow(row_number=row_number, reason=reason, raw=dict(row)))
            continue
        seen_emails.add(email.lower())

        pid = _text(_val(row, "id"))
        if not pid or pid in seen_ids:
            pid = participant_id_for(email)
        seen_ids.add(pid)

        participants.append(
            Participant(
                id=pid,
                full_name=full_name,
                email=email,
                input_index=len(participants),
                college_name=_text(_val(row, "college_name")),
                current_year=_text(_val(row, "current_year")),
                core_strengths=parse_core_strengths(_val(row, "core_strengths")),
                preferred_roles=parse_preferred_roles(_val(row, "preferred_roles")),
                working_style=parse_working_style(_val(row, "working_style")),
                availability=parse_availability(_val(row, "availability")),
                experience=parse_experience(_val(row, "experience")),
                case_preferences=parse_case_preferences(_val(row, "case_preferences")),
                preferred_team_size=parse_team_size(_val(row, "preferred_team_size"), max_team_size),
                team_preference=parse_team_preference(_val(row, "team_preference")),
            )
        )

    if rejected:
        logger.warning("Dropped %d of %d rows during normalization", len(rejected), len(rows))
    logger.info("Normalized %d participants", len(participants))
    return NormalizedBatch(participants=tuple(participants), rejected=tuple(rejected))


def normalize_frame(df: pd.DataFrame, max_team_size: int = 4) -> NormalizedBatch:
    cleaned = clean_frame(df)
    records = cleaned.astype(object).where(cleaned.notna(), None).to_dict(orient="records")
    return normalize_rows(records, max_team_size=max_team_size)


def read_participants_csv(csv_path: Union[str, Path], max_team_size: int = 4) -> NormalizedBatch:
    """Load a survey export and normalize it in one step."""
    df = pd.read_csv(csv_path, dtype=str, keep_default_na=False)
    return normalize_frame(df, max_team_size=max_team_size)


def participants_frame(participants: Sequence[Participant]) -> pd.DataFrame:
    """Flatten participants back into a table (multi-value fields joined with '; ')."""
    rows = []
    for p in participants:
        rows.append(
            {
                "participant_id": p.id,
                "full_name": p.full_name,
                "email": p.email,
                "college_name": p.college_name,
                "current_year": p.current_year,
                "core_strengths": "; ".join(p.core_strengths),
                "preferred_roles": "; ".join(p.preferred_roles),
                "working_style": "; ".join(p.working_style),
                "availability": p.availability.name if p.availability is not None else "",
                "experience": p.experience.name if p.experience is not None else "",
                "case_preferences": "; ".join(p.case_preferences),
                "preferred_team_size": p.preferred_team_size or "",
                "team_preference": p.team_preference.value,
            }
        )
    return pd.DataFrame(rows)
