from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class TimeSeriesDataPoint(BaseModel):
    date: str
    snapshot_id: str
    metric_values: Dict[str, float] = Field(default_factory=dict)

    @property
    def membership(self) -> Optional[float]:
        return self.metric_values.get("membership")


class PartitionSummary(BaseModel):
    total_data_points: int = 0
    membership_start: Optional[float] = None
    membership_end: Optional[float] = None
    membership_peak: Optional[float] = None
    membership_low: Optional[float] = None


class ProgramYearIndex(BaseModel):
    unit_id: str
    program_year: str
    start_date: str
    end_date: str
    last_updated: str
    data_points: List[TimeSeriesDataPoint] = Field(default_factory=list)
    summary: PartitionSummary = Field(default_factory=PartitionSummary)


class UnitIndexMetadata(BaseModel):
    unit_id: str
    last_updated: str
    available_program_years: List[str] = Field(default_factory=list)
    total_data_points: int = 0
