"""
test_collectors.py - Unit Tests for the Debt-Collector Directory
"""

import pytest
from datetime import datetime
from decimal import Decimal

from mpesewa import (
    ActorContext, Role, ValidationError,
    CollectorKind, Specialization, VerificationStatus, ReportReason,
    filter_collectors,
)
from mpesewa.collectors import (
    create_collector, build_report, mark_reported, mark_verified,
    to_dict, from_dict, report_to_dict, report_from_dict,
)


NOW = datetime(2025, 3, 15, 9, 0)
ADMIN = ActorContext("admin-1", Role.ADMIN, name="Platform Admin")


def collector(collector_id="collector-000001", **data):
    fields = {
        'name': "Jabali Recoveries",
        'country': "kenya",
        'specialization': "small-business",
        'city': "Nairobi",
        'services': ["field visits", "skip tracing"],
        'success_rate': 72,
        'rating': "4.5",
    }
    fields.update(data)
    return create_collector(collector_id, fields, NOW)


class TestCreateCollector:

    def test_defaults(self):
        c = collector()
        assert c.kind == CollectorKind.INDIVIDUAL
        assert c.specialization == Specialization.SMALL_BUSINESS
        assert c.verification_status == VerificationStatus.PENDING
        assert c.success_rate == Decimal("72")
        assert c.services == ("field visits", "skip tracing")

    @pytest.mark.parametrize("missing", ['name', 'country', 'specialization'])
    def test_required_fields(self, missing):
        with pytest.raises(ValidationError):
            collector(**{missing: ""})

    def test_rates_are_bounded(self):
        with pytest.raises(ValidationError):
            collector(success_rate=101)
        with pytest.raises(ValidationError):
            collector(rating=6)

    def test_unknown_specialization(self):
        with pytest.raises(ValidationError):
            collector(specialization="repossession")


class TestReportsAndVerification:

    def test_report_requires_details(self):
        with pytest.raises(ValidationError):
            build_report(collector(), "fraud", "  ", "", ADMIN, NOW)

    def test_report_reverts_to_pending_and_notes_reason(self):
        verified = mark_verified(collector(), NOW)
        report = build_report(verified, "harassment", "called at midnight", "", ADMIN, NOW)
        reported = mark_reported(verified, report, NOW)
        assert report.reason == ReportReason.HARASSMENT
        assert report.reported_by == "Platform Admin"
        assert reported.verification_status == VerificationStatus.PENDING
        assert "Reported on 2025-03-15: harassment" in reported.notes

    def test_verification_sets_date_and_note(self):
        verified = mark_verified(collector(), NOW)
        assert verified.is_verified
        assert verified.verification_date == NOW
        assert "Verified by admin on 2025-03-15" in verified.notes


class TestFilterCollectors:

    @pytest.fixture
    def directory(self):
        return [
            collector("c-1", name="zawadi agents", country="kenya", specialization="legal", rating=3),
            mark_verified(collector("c-2", name="Akoto Partners", country="ghana",
                                    specialization="corporate", rating=5), NOW),
            collector("c-3", name="Baraka Collect", country="kenya",
                      specialization="microfinance", rating=4, city="Mombasa"),
        ]

    def test_sorted_by_name_case_insensitive(self, directory):
        assert [c.id for c in filter_collectors(directory)] == ["c-2", "c-3", "c-1"]

    def test_filter_by_country_and_specialization(self, directory):
        assert [c.id for c in filter_collectors(directory, country="kenya", specialization="legal")] == ["c-1"]

    def test_all_specializations(self, directory):
        assert len(filter_collectors(directory, specialization="all")) == 3

    def test_query_matches_city(self, directory):
        assert [c.id for c in filter_collectors(directory, query="mombasa")] == ["c-3"]

    def test_verified_only(self, directory):
        assert [c.id for c in filter_collectors(directory, verified_only=True)] == ["c-2"]

    def test_sort_by_rating_descending(self, directory):
        result = filter_collectors(directory, sort_by="rating", descending=True)
        assert [c.id for c in result] == ["c-2", "c-3", "c-1"]

    def test_unknown_sort_key(self, directory):
        with pytest.raises(ValidationError):
            filter_collectors(directory, sort_by="phone")


class TestStorageForm:

    def test_collector_round_trip(self):
        c = mark_verified(collector(), NOW)
        assert from_dict(to_dict(c)) == c

    def test_report_round_trip(self):
        report = build_report(collector(), "fraud", "fake receipts", "receipt.jpg", ADMIN, NOW)
        assert report_from_dict(report_to_dict(report)) == report
