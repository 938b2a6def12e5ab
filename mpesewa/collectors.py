"""
collectors.py - Debt Collector Directory

Lenders with defaulted borrowers can look up debt collectors in their
country. Admins curate the directory: they register collectors, verify
them, take reports against them and delete them.

A report against a collector drops it back to "pending" verification and
appends a dated note; the report itself is kept as a CollectorReport.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .core import (
    ActorContext, ValidationError,
    to_decimal, parse_datetime, format_datetime, format_decimal,
)


class CollectorKind(str, Enum):
    INDIVIDUAL = "individual"
    COMPANY = "company"


class Specialization(str, Enum):
    INDIVIDUAL = "individual"
    SMALL_BUSINESS = "small-business"
    CORPORATE = "corporate"
    LEGAL = "legal"
    MICROFINANCE = "microfinance"
    CROSS_BORDER = "cross-border"


class FeeType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"
    HYBRID = "hybrid"


class VerificationStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"


class ReportReason(str, Enum):
    FRAUD = "fraud"
    UNPROFESSIONAL = "unprofessional"
    FALSE_INFO = "false-info"
    NON_PERFORMANCE = "non-performance"
    HARASSMENT = "harassment"
    OTHER = "other"


# Keys filter_collectors() can sort on.
SORT_KEYS = frozenset({
    'name', 'country', 'city', 'specialization', 'experience_years',
    'success_rate', 'rating', 'created_at',
})


@dataclass(frozen=True, slots=True)
class Collector:
    """A debt collector listed in the directory."""
    id: str
    name: str
    kind: CollectorKind
    email: str
    phone: str
    country: str
    city: str
    specialization: Specialization
    services: Tuple[str, ...]
    experience_years: int
    success_rate: Decimal
    fee_type: FeeType
    fee_details: str
    rating: Decimal
    verification_status: VerificationStatus
    created_at: datetime
    updated_at: datetime
    verification_date: Optional[datetime] = None
    notes: str = ""

    def __post_init__(self):
        if not self.id or not self.name or not self.name.strip():
            raise ValueError("Collector id and name cannot be empty")
        for name, enum_type in (('kind', CollectorKind),
                                ('specialization', Specialization),
                                ('fee_type', FeeType),
                                ('verification_status', VerificationStatus)):
            value = getattr(self, name)
            if not isinstance(value, enum_type):
                object.__setattr__(self, name, enum_type(value))
        if not isinstance(self.success_rate, Decimal):
            object.__setattr__(self, 'success_rate', to_decimal(self.success_rate))
        if not isinstance(self.rating, Decimal):
            object.__setattr__(self, 'rating', to_decimal(self.rating))
        if not isinstance(self.services, tuple):
            object.__setattr__(self, 'services', tuple(self.services))

    @property
    def is_verified(self) -> bool:
        return self.verification_status is VerificationStatus.VERIFIED


@dataclass(frozen=True, slots=True)
class CollectorReport:
    """A complaint filed against a collector."""
    collector_id: str
    collector_name: str
    reason: ReportReason
    details: str
    evidence: str
    reported_by: str
    reported_at: datetime
    status: str = "pending"


def _enum(enum_type, value, what):
    try:
        return enum_type(value)
    except ValueError:
        raise ValidationError(f"Unknown {what}: {value!r}")


def create_collector(collector_id: str, data: Mapping[str, Any], now: datetime) -> Collector:
    """
    Build a directory entry from registration data.

    name, country and specialization are required. New collectors start
    unverified.

    Raises:
        ValidationError: Missing required field or unknown enum value
    """
    for key in ('name', 'country', 'specialization'):
        if not data.get(key):
            raise ValidationError(f"Collector {key} is required")
    success_rate = to_decimal(data.get('success_rate', 0))
    if not Decimal("0") <= success_rate <= Decimal("100"):
        raise ValidationError(f"success_rate must be within 0-100, got {success_rate}")
    rating = to_decimal(data.get('rating', 0))
    if not Decimal("0") <= rating <= Decimal("5"):
        raise ValidationError(f"rating must be within 0-5, got {rating}")

    return Collector(
        id=collector_id,
        name=data['name'],
        kind=_enum(CollectorKind, data.get('kind', CollectorKind.INDIVIDUAL.value), "collector kind"),
        email=data.get('email', ""),
        phone=data.get('phone', ""),
        country=data['country'],
        city=data.get('city', ""),
        specialization=_enum(Specialization, data['specialization'], "specialization"),
        services=tuple(data.get('services', ())),
        experience_years=int(data.get('experience_years', 0)),
        success_rate=success_rate,
        fee_type=_enum(FeeType, data.get('fee_type', FeeType.PERCENTAGE.value), "fee type"),
        fee_details=str(data.get('fee_details', "")),
        rating=rating,
        verification_status=VerificationStatus.PENDING,
        notes=data.get('notes', ""),
        created_at=now,
        updated_at=now,
    )


def build_report(
    collector: Collector,
    reason: Any,
    details: str,
    evidence: str,
    actor: ActorContext,
    now: datetime,
) -> CollectorReport:
    """
    Raises:
        ValidationError: Unknown reason or empty details
    """
    reason = _enum(ReportReason, reason, "report reason")
    if not details or not details.strip():
        raise ValidationError("Report details are required")
    return CollectorReport(
        collector_id=collector.id,
        collector_name=collector.name,
        reason=reason,
        details=details,
        evidence=evidence or "",
        reported_by=actor.name or actor.user_id,
        reported_at=now,
    )


def _append_note(notes: str, line: str) -> str:
    return f"{notes}\n{line}".strip()


def mark_reported(collector: Collector, report: CollectorReport, now: datetime) -> Collector:
    """Drop a reported collector back to pending and note the report."""
    return replace(
        collector,
        verification_status=VerificationStatus.PENDING,
        notes=_append_note(collector.notes, f"Reported on {now.date().isoformat()}: {report.reason.value}"),
        updated_at=now,
    )


def mark_verified(collector: Collector, now: datetime) -> Collector:
    return replace(
        collector,
        verification_status=VerificationStatus.VERIFIED,
        verification_date=now,
        notes=_append_note(collector.notes, f"Verified by admin on {now.date().isoformat()}"),
        updated_at=now,
    )


def _matches(collector: Collector, query: str) -> bool:
    haystack = [
        collector.name, collector.email, collector.city, collector.country,
        collector.specialization.value, *collector.services,
    ]
    return any(query in text.lower() for text in haystack)


def filter_collectors(
    collectors: Iterable[Collector],
    country: Optional[str] = None,
    specialization: Optional[str] = None,
    query: Optional[str] = None,
    verified_only: bool = False,
    sort_by: str = 'name',
    descending: bool = False,
) -> List[Collector]:
    """
    Filter and sort the directory.

    Name sorting is case-insensitive. Ties keep directory order.

    Raises:
        ValidationError: sort_by is not in SORT_KEYS
    """
    if sort_by not in SORT_KEYS:
        raise ValidationError(f"Cannot sort collectors by {sort_by!r}")

    result = list(collectors)
    if country:
        result = [c for c in result if c.country == country]
    if specialization and specialization != 'all':
        result = [c for c in result if c.specialization.value == specialization]
    if query:
        needle = query.lower()
        result = [c for c in result if _matches(c, needle)]
    if verified_only:
        result = [c for c in result if c.is_verified]

    def key(c: Collector):
        value = getattr(c, sort_by)
        if sort_by == 'name':
            return value.lower()
        if isinstance(value, Enum):
            return value.value
        return value

    return sorted(result, key=key, reverse=descending)


# =============================================================================
# SERIALIZATION
# =============================================================================

def to_dict(collector: Collector) -> Dict[str, Any]:
    return {
        'id': collector.id,
        'name': collector.name,
        'type': collector.kind.value,
        'email': collector.email,
        'phone': collector.phone,
        'country': collector.country,
        'city': collector.city,
        'specialization': collector.specialization.value,
        'services': list(collector.services),
        'experienceYears': collector.experience_years,
        'successRate': format_decimal(collector.success_rate),
        'feeType': collector.fee_type.value,
        'feeDetails': collector.fee_details,
        'rating': format_decimal(collector.rating),
        'verificationStatus': collector.verification_status.value,
        'verificationDate': format_datetime(collector.verification_date),
        'notes': collector.notes,
        'createdAt': format_datetime(collector.created_at),
        'updatedAt': format_datetime(collector.updated_at),
    }


def from_dict(raw: Mapping[str, Any]) -> Collector:
    return Collector(
        id=raw['id'],
        name=raw['name'],
        kind=CollectorKind(raw.get('type', CollectorKind.INDIVIDUAL.value)),
        email=raw.get('email', ""),
        phone=raw.get('phone', ""),
        country=raw['country'],
        city=raw.get('city', ""),
        specialization=Specialization(raw['specialization']),
        services=tuple(raw.get('services', ())),
        experience_years=int(raw.get('experienceYears', 0)),
        success_rate=to_decimal(raw.get('successRate', '0')),
        fee_type=FeeType(raw.get('feeType', FeeType.PERCENTAGE.value)),
        fee_details=raw.get('feeDetails', ""),
        rating=to_decimal(raw.get('rating', '0')),
        verification_status=VerificationStatus(raw['verificationStatus']),
        verification_date=parse_datetime(raw.get('verificationDate')),
        notes=raw.get('notes', ""),
        created_at=parse_datetime(raw['createdAt']),
        updated_at=parse_datetime(raw['updatedAt']),
    )


def report_to_dict(report: CollectorReport) -> Dict[str, Any]:
    return {
        'collectorId': report.collector_id,
        'collectorName': report.collector_name,
        'reason': report.reason.value,
        'details': report.details,
        'evidence': report.evidence,
        'reportedBy': report.reported_by,
        'reportedAt': format_datetime(report.reported_at),
        'status': report.status,
    }


def report_from_dict(raw: Mapping[str, Any]) -> CollectorReport:
    return CollectorReport(
        collector_id=raw['collectorId'],
        collector_name=raw.get('collectorName', ""),
        reason=ReportReason(raw['reason']),
        details=raw.get('details', ""),
        evidence=raw.get('evidence', ""),
        reported_by=raw.get('reportedBy', ""),
        reported_at=parse_datetime(raw['reportedAt']),
        status=raw.get('status', "pending"),
    )
