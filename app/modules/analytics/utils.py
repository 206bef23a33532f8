"""
Utilities for the analytics module

CSV export of monthly buckets and KPI lists.
"""

import csv
import io
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List

from fastapi import Response

from app.modules.analytics.schemas import KPIMetric, MonthlyBucket


def create_csv_response(
    data: List[Dict[str, Any]],
    filename: str,
    headers: Dict[str, str] = None
) -> Response:
    """
    Create a CSV response from a list of dictionaries.

    Args:
        data: List of dictionaries with report data
        filename: Name for the CSV file
        headers: Optional mapping of field names to CSV headers

    Returns:
        FastAPI Response with CSV content
    """
    output = io.StringIO()
    fieldnames = list(headers.keys()) if headers else (list(data[0].keys()) if data else [])
    csv_headers = list(headers.values()) if headers else fieldnames

    writer = csv.DictWriter(output, fieldnames=fieldnames, extrasaction="ignore")
    if fieldnames:
        writer.writerow(dict(zip(fieldnames, csv_headers)))
    for row in data:
        writer.writerow({key: format_csv_value(value) for key, value in row.items()})

    csv_content = output.getvalue()
    output.close()

    return Response(
        content=csv_content,
        media_type="text/csv",
        headers={
            "Content-Disposition": f"attachment; filename={filename}",
            "Content-Type": "text/csv; charset=utf-8"
        }
    )


def format_csv_value(value: Any) -> str:
    """Format a value for CSV export."""
    if value is None:
        return ""
    elif isinstance(value, Decimal):
        return str(value)
    elif isinstance(value, (date, datetime)):
        return value.isoformat()
    elif isinstance(value, bool):
        return "Yes" if value else "No"
    return str(value)


def prepare_monthly_buckets_csv(buckets: List[MonthlyBucket]) -> List[Dict[str, Any]]:
    """Prepare monthly bucket data for CSV export"""
    return [
        {
            "month_key": bucket.month_key,
            "label": bucket.label,
            "sales_value": bucket.sales_value,
            "purchase_value": bucket.purchase_value,
            "expense_value": bucket.expense_value,
            "profit": bucket.profit,
            "order_value": bucket.order_value,
            "order_count": bucket.order_count,
        }
        for bucket in buckets
    ]


def prepare_kpis_csv(kpis: List[KPIMetric]) -> List[Dict[str, Any]]:
    """Prepare KPI data for CSV export"""
    return [
        {
            "name": kpi.name,
            "value": kpi.value,
            "unit": kpi.unit.value,
            "target": kpi.target,
            "previous_value": kpi.previous_value,
            "below_target": kpi.below_target,
        }
        for kpi in kpis
    ]


# CSV Headers mapping for better column names
CSV_HEADERS = {
    "monthly_buckets": {
        "month_key": "Mes",
        "label": "Periodo",
        "sales_value": "Ventas",
        "purchase_value": "Compras",
        "expense_value": "Gastos",
        "profit": "Ganancia",
        "order_value": "Valor Encomiendas",
        "order_count": "Número Encomiendas",
    },
    "kpis": {
        "name": "Indicador",
        "value": "Valor",
        "unit": "Unidad",
        "target": "Meta",
        "previous_value": "Valor Anterior",
        "below_target": "Bajo la Meta",
    },
}
