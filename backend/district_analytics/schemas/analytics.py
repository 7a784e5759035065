from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from district_analytics.schemas.rankings import MetricRankings


class ClosingPeriodResult(BaseModel):
    snapshot_date: str
    is_closing_period: bool
    data_month: str
    collection_date: str
    logical_date: str


class HealthStatus(str, Enum):
    THRIVING = "thriving"
    STABLE = "stable"
    VULNERABLE = "vulnerable"
    INTERVENTION_REQUIRED = "intervention-required"


class RiskFactor(str, Enum):
    LOW_MEMBERSHIP = "Membership below 12 (critical)"
    INSUFFICIENT_GROWTH = "Net growth below 3"
    MEMBERSHIP_TARGET_MISSED = "Membership below 20 without net growth of 3"
    DCP_CHECKPOINT_MISSED = "DCP checkpoint not met"
    CSP_NOT_SUBMITTED = "Club Success Plan not submitted"
    MEMBERSHIP_DECLINE = "Membership declining"

    @classmethod
    def from_label(cls, label: str) -> "RiskFactor":
        for factor in cls:
            if factor.value == label:
                return factor
        raise ValueError(f"Unknown risk factor label: {label}")


class DistinguishedLevel(str, Enum):
    SMEDLEY = "smedley"
    PRESIDENTS = "presidents"
    SELECT = "select"
    DISTINGUISHED = "distinguished"


class MembershipTrendPoint(BaseModel):
    date: str
    count: int


class DcpGoalsTrendPoint(BaseModel):
    date: str
    goals_achieved: int


class PaymentsTrendPoint(BaseModel):
    date: str
    payments: int


class ClubTrend(BaseModel):
    club_id: str
    club_name: str = ""
    division: Optional[str] = None
    area: Optional[str] = None
    current_status: HealthStatus
    health_score: float
    risk_factors: List[str] = Field(default_factory=list)
    membership_trend: List[MembershipTrendPoint] = Field(default_factory=list)
    dcp_goals_trend: List[DcpGoalsTrendPoint] = Field(default_factory=list)
    membership: int = 0
    membership_base: int = 0
    net_growth: int = 0
    goals_met: int = 0
    dcp_checkpoint: int = 0
    csp_submitted: bool = True
    distinguished_level: Optional[DistinguishedLevel] = None


class ClubCategorization(BaseModel):
    thriving: List[ClubTrend] = Field(default_factory=list)
    stable: List[ClubTrend] = Field(default_factory=list)
    vulnerable: List[ClubTrend] = Field(default_factory=list)
    intervention_required: List[ClubTrend] = Field(default_factory=list)

    @property
    def all_clubs(self) -> List[ClubTrend]:
        return self.thriving + self.stable + self.vulnerable + self.intervention_required


class ClubTrendsIndex(BaseModel):
    unit_id: str
    computed_at: str
    clubs: Dict[str, ClubTrend] = Field(default_factory=dict)


class VulnerableClubsReport(BaseModel):
    unit_id: str
    computed_at: str
    total_vulnerable: int
    intervention_required_count: int
    vulnerable_clubs: List[ClubTrend] = Field(default_factory=list)
    intervention_required_clubs: List[ClubTrend] = Field(default_factory=list)


class DistinguishedCounts(BaseModel):
    smedley: int = 0
    presidents: int = 0
    select: int = 0
    distinguished: int = 0

    @property
    def total(self) -> int:
        return self.smedley + self.presidents + self.select + self.distinguished


class DistinguishedProjection(BaseModel):
    projected_distinguished: int
    current_smedley: int
    current_presidents: int
    current_select: int
    current_distinguished: int
    projection_date: str


class DistinguishedClubEntry(BaseModel):
    club_id: str
    club_name: str = ""
    level: DistinguishedLevel
    goals_met: int
    membership: int


class LevelProgress(BaseModel):
    current: int
    trend: str


class DistinguishedClubAnalytics(BaseModel):
    unit_id: str
    computed_at: str
    distinguished_clubs: DistinguishedCounts
    total_distinguished: int
    distinguished_club_list: List[DistinguishedClubEntry] = Field(default_factory=list)
    projection: DistinguishedProjection
    progress_by_level: Dict[str, LevelProgress] = Field(default_factory=dict)


class MetricComparison(BaseModel):
    """One metric across two years; the change is split by unit of measure."""

    current: float
    previous: float
    absolute_change: float
    percent_change: Optional[float] = None


class YearOverYearMetrics(BaseModel):
    membership: MetricComparison
    distinguished_clubs: MetricComparison
    thriving_clubs: MetricComparison
    vulnerable_clubs: MetricComparison
    intervention_required_clubs: MetricComparison
    dcp_goals_total: MetricComparison
    dcp_goals_average: MetricComparison
    club_count: MetricComparison


class MultiYearPoint(BaseModel):
    year: int
    date: str
    membership: int
    distinguished_clubs: int
    total_dcp_goals: int
    club_count: int


class YearOverYearComparison(BaseModel):
    unit_id: str
    computed_at: str
    current_date: str
    previous_year_date: str
    data_available: bool
    message: Optional[str] = None
    metrics: Optional[YearOverYearMetrics] = None
    multi_year_trends: Optional[List[MultiYearPoint]] = None


class MembershipAnalytics(BaseModel):
    unit_id: str
    computed_at: str
    total_membership: int
    membership_change: int
    growth_rate: float
    retention_rate: float
    membership_trend: List[MembershipTrendPoint] = Field(default_factory=list)
    payments_trend: List[PaymentsTrendPoint] = Field(default_factory=list)


class DivisionEffectiveness(BaseModel):
    division: str
    club_count: int
    health_score: float
    growth_score: float
    dcp_score: float
    overall_score: float
    rank: int = 0


class AreaCorrelation(BaseModel):
    area: str
    division: Optional[str] = None
    club_count: int
    activity_indicator: str
    club_performance_score: float
    correlation: str


class LeadershipSummary(BaseModel):
    top_divisions: List[str] = Field(default_factory=list)
    top_areas: List[str] = Field(default_factory=list)
    average_leadership_score: float = 0.0
    total_best_practice_divisions: int = 0


class LeadershipInsights(BaseModel):
    unit_id: str
    computed_at: str
    division_rankings: List[DivisionEffectiveness] = Field(default_factory=list)
    best_practice_divisions: List[DivisionEffectiveness] = Field(default_factory=list)
    area_correlations: List[AreaCorrelation] = Field(default_factory=list)
    summary: LeadershipSummary = Field(default_factory=LeadershipSummary)


class RecognitionTargets(BaseModel):
    distinguished: int
    select: int
    presidents: int
    smedley: int


class MetricTargets(BaseModel):
    current: int
    base: Optional[int] = None
    targets: Optional[RecognitionTargets] = None
    achieved_level: Optional[DistinguishedLevel] = None
    rankings: MetricRankings


class PerformanceTargets(BaseModel):
    unit_id: str
    computed_at: str
    data_available: bool
    paid_clubs: MetricTargets
    membership_payments: MetricTargets
    distinguished_clubs: MetricTargets


class UnitAnalytics(BaseModel):
    unit_id: str
    computed_at: str
    start_date: str
    end_date: str
    total_membership: int
    membership_change: int
    club_count: int
    thriving_count: int
    stable_count: int
    vulnerable_count: int
    intervention_required_count: int
    distinguished_clubs: DistinguishedCounts
    distinguished_projection: DistinguishedProjection
    membership_trend: List[MembershipTrendPoint] = Field(default_factory=list)


class ComputationResult(BaseModel):
    unit_analytics: UnitAnalytics
    membership: MembershipAnalytics
    vulnerable_clubs: VulnerableClubsReport
    leadership: LeadershipInsights
    distinguished: DistinguishedClubAnalytics
    year_over_year: YearOverYearComparison
    performance_targets: PerformanceTargets
    club_trends: ClubTrendsIndex

