"""
Target comparator

Merges externally configured KPI targets into a computed KPI list.
"""

import logging
from decimal import Decimal
from typing import List, Mapping, Optional

from app.modules.analytics.calculator import to_decimal
from app.modules.analytics.schemas import KPIMetric

logger = logging.getLogger(__name__)


def apply_targets(kpis: List[KPIMetric], targets: Optional[Mapping[str, Decimal]]) -> List[KPIMetric]:
    """
    Override catalog targets with the configured ones.

    Targets may be keyed by KPI key ("roi") or display name ("ROI"). Missing
    entries keep the catalog default; below_target follows the new target.
    """
    if not targets:
        return list(kpis)

    known = set()
    merged = []
    for kpi in kpis:
        for lookup in (kpi.key, kpi.name):
            if lookup in targets and targets[lookup] is not None:
                known.add(lookup)
                kpi = kpi.model_copy(update={"target": to_decimal(targets[lookup])})
                break
        merged.append(kpi)

    unknown = set(targets) - known
    if unknown:
        logger.debug(f"Ignoring targets for unknown KPIs: {sorted(unknown)}")
    return merged
