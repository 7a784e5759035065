"""Resolve the logical snapshot date for data collected during a closing period.

At month end the source keeps publishing the previous month's final figures
under the current collection date. When the cache sidecar says so, the data
belongs to the last day of ``dataMonth``, not to the day it was collected.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any, Mapping, Optional, Tuple

from district_analytics.analytics.utils import (
    format_date,
    get_last_day_of_month,
    parse_date,
)
from district_analytics.schemas.analytics import ClosingPeriodResult


logger = logging.getLogger(__name__)

_FULL_MONTH_RE = re.compile(r"^(\d{4})-(\d{1,2})$")
_BARE_MONTH_RE = re.compile(r"^(\d{1,2})$")


def parse_data_month(value: Any, ref_year: int, ref_month: int) -> Optional[Tuple[int, int]]:
    """Return (year, month) for ``YYYY-MM`` or a bare ``MM``; None when unparseable.

    A bare month later than the reference month belongs to the previous year
    (December data collected in January).
    """
    if not isinstance(value, str):
        return None
    text = value.strip()
    full = _FULL_MONTH_RE.match(text)
    if full:
        year, month = int(full.group(1)), int(full.group(2))
    else:
        bare = _BARE_MONTH_RE.match(text)
        if not bare:
            return None
        month = int(bare.group(1))
        year = ref_year - 1 if month > ref_month else ref_year
    if not 1 <= month <= 12:
        return None
    return year, month


def read_cache_metadata(cache_dir: Path, collection_date: str) -> Optional[dict]:
    path = Path(cache_dir) / "raw-csv" / collection_date / "metadata.json"
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except OSError as exc:
        logger.warning(
            "closing_period.metadata_unreadable",
            extra={"operation": "read_cache_metadata", "path": str(path), "error": str(exc)},
        )
        return None
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        logger.warning(
            "closing_period.metadata_invalid",
            extra={"operation": "read_cache_metadata", "path": str(path), "error": str(exc)},
        )
        return None
    if not isinstance(payload, dict):
        logger.warning(
            "closing_period.metadata_invalid",
            extra={"operation": "read_cache_metadata", "path": str(path)},
        )
        return None
    return payload


class ClosingPeriodDetector:
    def __init__(self, log: Optional[logging.Logger] = None) -> None:
        self.log = log or logger

    def detect(
        self,
        collection_date: str,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> ClosingPeriodResult:
        collected = parse_date(collection_date)
        collection_month = f"{collected.year:04d}-{collected.month:02d}"

        if not metadata:
            return self._regular(collection_date, collection_month)
        flag = metadata.get("isClosingPeriod")
        if flag is not None and not isinstance(flag, bool):
            self.log.warning(
                "closing_period.metadata_invalid",
                extra={
                    "operation": "detect_closing_period",
                    "collection_date": collection_date,
                    "is_closing_period": repr(flag),
                },
            )
            return self._regular(collection_date, collection_month)
        if flag is not True:
            return self._regular(collection_date, collection_month)

        parsed = parse_data_month(metadata.get("dataMonth"), collected.year, collected.month)
        if parsed is None or parsed > (collected.year, collected.month):
            self.log.warning(
                "closing_period.data_month_invalid",
                extra={
                    "operation": "detect_closing_period",
                    "collection_date": collection_date,
                    "data_month": metadata.get("dataMonth"),
                },
            )
            return self._regular(collection_date, collection_month)

        year, month = parsed
        logical = format_date(
            collected.replace(year=year, month=month, day=get_last_day_of_month(year, month))
        )
        self.log.info(
            "closing_period.detected",
            extra={
                "operation": "detect_closing_period",
                "collection_date": collection_date,
                "snapshot_id": logical,
            },
        )
        return ClosingPeriodResult(
            snapshot_date=logical,
            is_closing_period=True,
            data_month=f"{year:04d}-{month:02d}",
            collection_date=collection_date,
            logical_date=logical,
        )

    def detect_from_cache(self, cache_dir: Path, collection_date: str) -> ClosingPeriodResult:
        return self.detect(collection_date, read_cache_metadata(cache_dir, collection_date))

    @staticmethod
    def _regular(collection_date: str, collection_month: str) -> ClosingPeriodResult:
        return ClosingPeriodResult(
            snapshot_date=collection_date,
            is_closing_period=False,
            data_month=collection_month,
            collection_date=collection_date,
            logical_date=collection_date,
        )
