"""Client-side search and specialty filtering of the active-record list."""

from typing import Iterable, List, Optional

from .records import ActiveRecord


def matches_search(record: ActiveRecord, search_term: str) -> bool:
    """Name match is case-insensitive; MRN match is a plain substring test."""
    term = search_term or ""
    return term.lower() in (record.patient_name or "").lower() or term in (record.mrn or "")


def matches_specialty(record: ActiveRecord, specialty: Optional[str]) -> bool:
    return not specialty or record.specialty_name == specialty


def filter_records(
    records: Iterable[ActiveRecord],
    search_term: str = "",
    specialty: Optional[str] = None,
) -> List[ActiveRecord]:
    """Return the records shown for the given search box and specialty filter."""
    return [
        record for record in records
        if matches_search(record, search_term) and matches_specialty(record, specialty)
    ]
