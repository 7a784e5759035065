# Typed records for the source statistics. External column names (and their
# historical variants) are resolved here once; nothing downstream looks at
# raw source keys.

from __future__ import annotations

import re
from typing import Any, Iterable, List, Mapping, Optional, Sequence

from pydantic import BaseModel, Field


CLUB_ID_FIELDS = ("Club Number", "Club ID", "ClubID")
CLUB_NAME_FIELDS = ("Club Name", "ClubName")
DIVISION_FIELDS = ("Division", "Division Name")
AREA_FIELDS = ("Area", "Area Name")
MEMBERSHIP_FIELDS = ("Active Members", "Active Membership", "Membership")
MEMBERSHIP_BASE_FIELDS = ("Mem. Base", "Membership Base")
GOALS_FIELDS = ("Goals Met",)
CSP_FIELDS = ("CSP", "Club Success Plan", "CSP Submitted", "Club Success Plan Submitted")
OCT_RENEWAL_FIELDS = ("Oct. Ren.", "Oct. Ren")
APR_RENEWAL_FIELDS = ("Apr. Ren.", "Apr. Ren")
NEW_MEMBER_FIELDS = ("New Members", "New")
STATUS_FIELDS = ("Club Status", "Status")

_CSP_TRUE = {"yes", "true", "1", "submitted", "y"}
_CSP_FALSE = {"no", "false", "0", "not submitted", "n"}


def first_present(record: Mapping[str, Any], names: Sequence[str]) -> Any:
    for name in names:
        value = record.get(name)
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return value
    return None


def parse_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return int(value)
    cleaned = str(value).replace(",", "").replace("%", "").strip()
    if not cleaned:
        return None
    try:
        return int(float(cleaned))
    except ValueError:
        return None


def parse_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    cleaned = str(value).replace(",", "").replace("%", "").strip()
    if not cleaned:
        return None
    try:
        return float(cleaned)
    except ValueError:
        return None


def parse_csp(value: Any) -> Optional[bool]:
    """Map the CSP column to a bool; None means the column was absent."""
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _CSP_TRUE:
        return True
    if text in _CSP_FALSE:
        return False
    # Unknown markers count as submitted.
    return True


def normalize_club_id(value: Any) -> str:
    text = str(value).strip()
    stripped = text.lstrip("0")
    return stripped or text[:1]


def _label(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class ClubStatistics(BaseModel):
    club_id: str
    club_name: str = ""
    division: Optional[str] = None
    area: Optional[str] = None
    membership: int = 0
    membership_base: int = 0
    goals_met: int = 0
    csp_submitted: Optional[bool] = None
    oct_renewals: int = 0
    apr_renewals: int = 0
    new_members: int = 0
    club_status: Optional[str] = None

    @property
    def net_growth(self) -> int:
        return self.membership - self.membership_base

    @property
    def has_csp(self) -> bool:
        # Years before CSP was tracked have no column: treat as submitted.
        return self.csp_submitted is not False

    @classmethod
    def from_source_record(cls, record: Mapping[str, Any]) -> "ClubStatistics":
        raw_id = first_present(record, CLUB_ID_FIELDS)
        if raw_id is None:
            raise ValueError("club record has no club id")
        return cls(
            club_id=normalize_club_id(raw_id),
            club_name=_label(first_present(record, CLUB_NAME_FIELDS)) or "",
            division=_label(first_present(record, DIVISION_FIELDS)),
            area=_label(first_present(record, AREA_FIELDS)),
            membership=parse_int(first_present(record, MEMBERSHIP_FIELDS)) or 0,
            membership_base=parse_int(first_present(record, MEMBERSHIP_BASE_FIELDS)) or 0,
            goals_met=parse_int(first_present(record, GOALS_FIELDS)) or 0,
            csp_submitted=parse_csp(first_present(record, CSP_FIELDS)),
            oct_renewals=parse_int(first_present(record, OCT_RENEWAL_FIELDS)) or 0,
            apr_renewals=parse_int(first_present(record, APR_RENEWAL_FIELDS)) or 0,
            new_members=parse_int(first_present(record, NEW_MEMBER_FIELDS)) or 0,
            club_status=_label(first_present(record, STATUS_FIELDS)),
        )


class UnitStatistics(BaseModel):
    """All club rows for one unit as of one snapshot date."""

    unit_id: str
    snapshot_date: str
    clubs: List[ClubStatistics] = Field(default_factory=list)
    membership_base: Optional[int] = None
    total_payments: Optional[int] = None

    @property
    def club_count(self) -> int:
        return len(self.clubs)

    @property
    def total_membership(self) -> int:
        return sum(club.membership for club in self.clubs)

    @property
    def total_goals(self) -> int:
        return sum(club.goals_met for club in self.clubs)

    @property
    def division_count(self) -> int:
        return len({club.division for club in self.clubs if club.division})

    @property
    def area_count(self) -> int:
        return len({club.area for club in self.clubs if club.area})

    @property
    def effective_membership_base(self) -> int:
        if self.membership_base is not None:
            return self.membership_base
        return sum(club.membership_base for club in self.clubs)

    @property
    def effective_payments(self) -> int:
        if self.total_payments is not None:
            return self.total_payments
        return sum(
            club.oct_renewals + club.apr_renewals + club.new_members for club in self.clubs
        )

    @classmethod
    def from_source_records(
        cls,
        unit_id: str,
        snapshot_date: str,
        records: Iterable[Mapping[str, Any]],
        *,
        membership_base: Optional[int] = None,
        total_payments: Optional[int] = None,
    ) -> "UnitStatistics":
        clubs = [
            ClubStatistics.from_source_record(record)
            for record in records
            if first_present(record, CLUB_ID_FIELDS) is not None
        ]
        return cls(
            unit_id=unit_id,
            snapshot_date=snapshot_date,
            clubs=clubs,
            membership_base=membership_base,
            total_payments=total_payments,
        )


_UNIT_ID_CLEAN = re.compile(r"^(District\s+)?", re.IGNORECASE)


class RankingInput(BaseModel):
    """One row of the all-units summary used for cross-unit ranking."""

    unit_id: str
    region: Optional[str] = None
    paid_clubs: int = 0
    paid_club_base: Optional[int] = None
    club_growth_percent: float = 0.0
    total_payments: int = 0
    payment_base: Optional[int] = None
    payment_growth_percent: float = 0.0
    active_clubs: int = 0
    distinguished_clubs: int = 0
    select_distinguished_clubs: int = 0
    presidents_distinguished_clubs: int = 0

    @property
    def distinguished_percent(self) -> float:
        if self.active_clubs <= 0:
            return 0.0
        return self.distinguished_clubs / self.active_clubs * 100

    @classmethod
    def from_source_record(cls, record: Mapping[str, Any]) -> "RankingInput":
        raw_id = first_present(record, ("DISTRICT", "District"))
        if raw_id is None:
            raise ValueError("ranking record has no unit id")
        return cls(
            unit_id=_UNIT_ID_CLEAN.sub("", str(raw_id).strip()),
            region=_label(first_present(record, ("REGION", "Region"))),
            paid_clubs=parse_int(record.get("Paid Clubs")) or 0,
            paid_club_base=parse_int(record.get("Paid Club Base")),
            club_growth_percent=parse_float(record.get("% Club Growth")) or 0.0,
            total_payments=parse_int(record.get("Total YTD Payments")) or 0,
            payment_base=parse_int(record.get("Payment Base")),
            payment_growth_percent=parse_float(record.get("% Payment Growth")) or 0.0,
            active_clubs=parse_int(record.get("Active Clubs")) or 0,
            distinguished_clubs=parse_int(record.get("Total Distinguished Clubs")) or 0,
            select_distinguished_clubs=parse_int(record.get("Select Distinguished Clubs")) or 0,
            presidents_distinguished_clubs=parse_int(record.get("Presidents Distinguished Clubs"))
            or 0,
        )
