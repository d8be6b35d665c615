"""
Discharge Management Agent - Search/Filter Tests

Run with: pytest tests/test_search.py -v
"""

import pytest

from agents.discharge_management.records import Admission, Consultation
from agents.discharge_management.search import filter_records, matches_search


@pytest.fixture
def records():
    return [
        Admission(mrn="MRN-100", patient_name="Jane Smith", specialty="Neurology"),
        Admission(mrn="MRN-200", patient_name="Omar Haddad", specialty="Hematology"),
        Consultation(mrn="MRN-300", patient_name="jane roe", consultation_specialty="Neurology"),
        Consultation(mrn="X-400", patient_name="Li Wei", consultation_specialty="Rheumatology"),
    ]


class TestSearchTerm:
    """Tests for name/MRN matching."""

    def test_empty_term_matches_everything(self, records):
        """An empty search shows every record."""
        assert filter_records(records) == records

    def test_name_match_ignores_case(self, records):
        """Name search ignores case."""
        upper = filter_records(records, "Jane")
        lower = filter_records(records, "jane")
        assert upper == lower
        assert [r.mrn for r in upper] == ["MRN-100", "MRN-300"]

    def test_mrn_substring_match(self, records):
        """A partial MRN matches."""
        assert [r.mrn for r in filter_records(records, "X-4")] == ["X-400"]

    def test_mrn_match_is_case_sensitive(self, records):
        """MRN search respects case."""
        record = records[3]
        assert matches_search(record, "X-4")
        assert not matches_search(record, "x-4")


class TestSpecialtyFilter:
    """Tests for the specialty dropdown."""

    def test_filter_applies_to_both_kinds(self, records):
        """Specialty filtering covers admissions and consultations."""
        shown = filter_records(records, specialty="Neurology")
        assert [r.mrn for r in shown] == ["MRN-100", "MRN-300"]

    def test_search_and_specialty_combine(self, records):
        """Search term and specialty must both match."""
        shown = filter_records(records, "jane", "Neurology")
        assert [r.mrn for r in shown] == ["MRN-100", "MRN-300"]
        assert filter_records(records, "omar", "Neurology") == []

    def test_unknown_specialty_shows_nothing(self, records):
        """A specialty with no records shows nothing."""
        assert filter_records(records, specialty="Cardiology") == []
