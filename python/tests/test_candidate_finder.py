"""
Tests for MatchCandidateFinder

Runs against an in-memory SQLite datastore with the default scoring
configuration (weights 0.60/0.25/0.15, name floor 0.70, minimum score 60).
"""

from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from database.models import Gender, MissingStatus
from database.repositories import MissingReportRepository
from matching.candidate_finder import MatchCandidateFinder
from matching.models import PersonCandidate
from validators import InputValidationError


@pytest.fixture
def finder(db_provider, config):
    return MatchCandidateFinder(db_provider, config)


def candidate(full_name="Nimal Perera", age=34, gender=Gender.MALE, nic=None):
    return PersonCandidate(full_name=full_name, age=age, gender=gender, nic=nic)


class TestFindMatches:
    """Ranking and filtering of open reports"""

    def test_identical_details_rank_top(self, finder, make_report):
        report_id = make_report("Nimal Perera", 34, Gender.MALE)

        matches = finder.find_matches(candidate())

        assert len(matches) == 1
        assert matches[0].missing_report_id == report_id
        assert matches[0].confidence.overall == pytest.approx(100.0)
        assert matches[0].match_score == 100
        assert matches[0].reasons == [
            "Name similarity: 100%",
            "Age matches exactly",
            "Gender matches",
        ]

    def test_one_character_name_difference(self, finder, make_report):
        make_report("Nimal Perera", 34, Gender.MALE)

        matches = finder.find_matches(candidate(full_name="Nimal Perara"))

        assert len(matches) == 1
        breakdown = matches[0].confidence
        assert breakdown.name_score == pytest.approx(100 * (1 - 1 / 12))
        # 0.60 * 91.67 + 25 + 15
        assert breakdown.overall == pytest.approx(60 * (1 - 1 / 12) + 40)
        assert "Name similarity: 92%" in matches[0].reasons

    def test_nic_match_ranks_first(self, finder, make_report):
        """A NIC match outranks a perfect name/age/gender match"""
        make_report("Nimal Perera", 34, Gender.MALE, minutes_ago=0)
        nic_report = make_report("K. Silva", 71, Gender.FEMALE, nic="123456789V", minutes_ago=60)

        matches = finder.find_matches(candidate(nic="123456789v"))

        assert matches[0].missing_report_id == nic_report
        assert matches[0].confidence.nic_match is True
        assert matches[0].confidence.overall == 100.0
        assert "NIC matches exactly" in matches[0].reasons
        assert len(matches) == 2
        assert matches[1].confidence.nic_match is False

    def test_nic_match_bypasses_name_floor(self, finder, make_report):
        report_id = make_report("Completely Different", 20, Gender.FEMALE, nic="200012345678")

        matches = finder.find_matches(candidate(nic="200012345678"))

        assert [m.missing_report_id for m in matches] == [report_id]

    def test_missing_nic_never_matches(self, finder, make_report):
        """Two blank NICs are not a NIC match"""
        make_report("Someone Else", 20, Gender.FEMALE, nic=None)

        assert finder.find_matches(candidate(nic=None)) == []

    def test_found_reports_excluded(self, finder, make_report):
        make_report("Nimal Perera", 34, Gender.MALE, status=MissingStatus.FOUND)
        make_report("Nimal Perera", 34, Gender.MALE, nic="123456789V", status=MissingStatus.FOUND)

        assert finder.find_matches(candidate(nic="123456789V")) == []

    def test_soft_deleted_reports_excluded(self, finder, make_report):
        make_report("Nimal Perera", 34, Gender.MALE, is_deleted=True)

        assert finder.find_matches(candidate()) == []

    def test_name_below_floor_skipped(self, finder, make_report):
        make_report("Sunil Shantha", 34, Gender.MALE)

        assert finder.find_matches(candidate()) == []

    def test_below_minimum_relevance_dropped(self, finder, make_report):
        """Similar name but age and gender far off: 0.60 * 91.67 = 55"""
        make_report("Nimal Perera", 70, Gender.FEMALE)

        assert finder.find_matches(candidate(full_name="Nimal Perara")) == []

    def test_age_within_tolerance_reason(self, finder, make_report):
        make_report("Nimal Perera", 36, Gender.MALE)

        matches = finder.find_matches(candidate())

        assert "Age within 2 year(s)" in matches[0].reasons
        assert matches[0].confidence.age_score == 100.0

    def test_ties_broken_by_recency(self, finder, make_report):
        older = make_report("Nimal Perera", 34, Gender.MALE, minutes_ago=120)
        newer = make_report("Nimal Perera", 34, Gender.MALE, minutes_ago=5)

        matches = finder.find_matches(candidate())

        assert [m.missing_report_id for m in matches] == [newer, older]

    def test_ordered_by_score(self, finder, make_report):
        weaker = make_report("Nimal Perera", 40, Gender.MALE, minutes_ago=0)
        stronger = make_report("Nimal Perera", 34, Gender.MALE, minutes_ago=60)

        matches = finder.find_matches(candidate())

        assert [m.missing_report_id for m in matches] == [stronger, weaker]

    def test_capped_at_max_candidates(self, finder, make_report):
        for i in range(12):
            make_report("Nimal Perera", 34, Gender.MALE, minutes_ago=i)

        assert len(finder.find_matches(candidate())) == 10

    def test_no_reports(self, finder):
        assert finder.find_matches(candidate()) == []


class TestAgeScore:
    @pytest.mark.parametrize("diff,expected", [
        (0, 1.0),
        (2, 1.0),
        (6, 0.5),
        (10, 0.0),
        (25, 0.0),
    ])
    def test_band_and_decay(self, finder, diff, expected):
        assert finder.age_score(diff) == pytest.approx(expected)


class TestValidation:
    """Invalid candidates are rejected before any datastore access"""

    @pytest.mark.parametrize("bad", [
        candidate(full_name="N"),
        candidate(full_name="Nimal <script>"),
        candidate(age=150),
        candidate(age=-1),
        candidate(gender="UNKNOWN"),
        candidate(nic="12345"),
    ])
    def test_invalid_candidate(self, config, bad):
        provider = MagicMock()
        finder = MatchCandidateFinder(provider, config)

        with pytest.raises(InputValidationError):
            finder.find_matches(bad)

        provider.session_scope.assert_not_called()

    def test_gender_string_accepted(self, finder, make_report):
        make_report("Nimal Perera", 34, Gender.MALE)

        assert len(finder.find_matches(candidate(gender="male"))) == 1


class TestDatastoreFailure:
    def test_datastore_error_yields_empty_list(self, finder, make_report):
        make_report("Nimal Perera", 34, Gender.MALE)
        error = OperationalError("SELECT", {}, Exception("connection refused"))

        with patch.object(MissingReportRepository, "list_open", side_effect=error):
            assert finder.find_matches(candidate()) == []
