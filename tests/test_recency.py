# =============================================================================
# Unit Tests - Recency (filename dates, recency policy, display names)
# =============================================================================

from datetime import datetime, timezone

import pytest

from mr_broker.services.recency import (
    DateLabel,
    display_name,
    filename_timestamp,
    label_date,
    match_bare_year,
    match_numeric_suffix,
    match_quarter_year,
    match_year_month,
    parse_iso_timestamp,
    resolve_recency,
)


def _ts(year: int, month: int, day: int = 1) -> float:
    return datetime(year, month, day, tzinfo=timezone.utc).timestamp()


class TestFilenameMatchers:
    """Each matcher in isolation."""

    @pytest.mark.parametrize("name, expected", [
        ("Brand Tracker June 2024.pdf", _ts(2024, 6)),
        ("Brand Tracker Jun_2024", _ts(2024, 6)),
        ("Usage report 2024-06", _ts(2024, 6)),
        ("Usage report 06/2024", _ts(2024, 6)),
        ("Sept 2023 vs March 2024 deck", _ts(2024, 3)),
    ])
    def test_year_month(self, name, expected):
        assert match_year_month(name) == expected

    def test_year_month_ignores_month_inside_word(self):
        assert match_year_month("Deck 2023") is None

    @pytest.mark.parametrize("name, expected", [
        ("Q1 2024 Readout", _ts(2024, 3, 31)),
        ("2024Q3 segmentation", _ts(2024, 9, 30)),
        ("Q4-23 pricing", _ts(2023, 12, 31)),
        ("Q2 2023 and Q1 2024", _ts(2024, 3, 31)),
    ])
    def test_quarter_maps_to_end_of_quarter(self, name, expected):
        assert match_quarter_year(name) == expected

    def test_bare_year_is_january_first(self):
        assert match_bare_year("Deck 2023.pptx") == _ts(2023, 1, 1)
        assert match_bare_year("No date here") is None

    @pytest.mark.parametrize("name, expected", [
        ("Report_202403.pdf", _ts(2024, 3)),
        ("Report_20240315", _ts(2024, 3, 15)),
        ("Report_20241399", None),
        ("Report_1234567", None),
        ("Report", None),
    ])
    def test_numeric_suffix(self, name, expected):
        assert match_numeric_suffix(name) == expected


class TestFilenameTimestamp:
    """Matchers run in order; the first hit wins."""

    def test_explicit_month_beats_bare_year(self):
        assert filename_timestamp("Tracker 2023 wave June 2024") == _ts(2024, 6)

    def test_quarter_beats_bare_year(self):
        assert filename_timestamp("Q2 2023 concept test") == _ts(2023, 6, 30)

    def test_numeric_suffix_as_last_resort(self):
        assert filename_timestamp("Report_202403.pdf") == _ts(2024, 3)

    def test_no_date_is_zero(self):
        assert filename_timestamp("Notes") == 0.0


class TestResolveRecency:
    """live modified time -> filename date -> stored modified time -> 0."""

    def test_live_modified_wins(self):
        live = {"f1": 123.0}
        assert resolve_recency("f1", "Deck June 2024", live, "2020-01-01T00:00:00Z") == 123.0

    def test_filename_when_not_live(self):
        assert resolve_recency("f1", "Deck June 2024", {"other": 5.0}) == _ts(2024, 6)

    def test_stored_when_no_filename_date(self):
        assert resolve_recency("f1", "Deck", None, "2022-02-02T00:00:00Z") == _ts(2022, 2, 2)

    def test_zero_when_nothing_known(self):
        assert resolve_recency("f1", "Deck", None, None) == 0.0


class TestParseIsoTimestamp:
    def test_drive_format(self):
        assert parse_iso_timestamp("2024-06-01T00:00:00.000Z") == _ts(2024, 6, 1)

    def test_invalid_is_zero(self):
        assert parse_iso_timestamp("yesterday") == 0.0
        assert parse_iso_timestamp(None) == 0.0


class TestDisplayName:
    @pytest.mark.parametrize("raw, expected", [
        ("Brand Tracker_v2.pdf", "Brand Tracker"),
        ("Pricing Study - final (1).docx", "Pricing Study"),
        ("Concept Test 20240315", "Concept Test"),
        ("Segmentation", "Segmentation"),
        ("ABC1234567", "ABC1234567"),
        ("Deck.2024", "Deck.2024"),
    ])
    def test_strips_extension_and_suffixes(self, raw, expected):
        assert display_name(raw) == expected


class TestLabelDate:
    def test_latest_month_in_text(self):
        label = label_date("Fieldwork June 2023.\nTopline delivered March 2024.")
        assert label == DateLabel("March", "2024")
        assert str(label) == "March 2024"

    def test_falls_back_to_modified_time(self):
        assert label_date("no dates", "2023-11-05T10:00:00Z") == DateLabel("November", "2023")

    def test_empty_when_unknown(self):
        assert str(label_date("no dates")) == ""
