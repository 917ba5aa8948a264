"""
Report listing and per-account statistics over stored reports.
"""
import math
from typing import Any, Dict, List

from resumail_core.llm.schemas import CATEGORIES
from resumail_core.storage.reports import ReportStore


def normalize_report(row: Dict[str, Any]) -> Dict[str, Any]:
    """Fill defaults so consumers never see missing or mistyped fields."""
    classification = row.get("classification")
    created_at = row.get("created_at")
    return {
        "id": row.get("id"),
        "account_id": row.get("account_id"),
        "created_at": created_at.isoformat() if hasattr(created_at, "isoformat") else created_at,
        "is_final": bool(row.get("is_final")),
        "batch_index": row.get("batch_index"),
        "total_emails": row.get("total_emails") or 0,
        "classification": classification if isinstance(classification, dict) else {},
        "highlights": row.get("highlights") if isinstance(row.get("highlights"), list) else [],
        "summary": row.get("summary") or "",
        "report_text": row.get("report_text") or row.get("summary") or "",
        "mini_report_ids": row.get("mini_report_ids") if isinstance(row.get("mini_report_ids"), list) else [],
    }


def list_reports(store: ReportStore, account_id: str, final_only: bool = False) -> List[Dict[str, Any]]:
    """All reports of an account, newest first."""
    rows = store.select_reports(account_id=account_id, is_final=True if final_only else None)
    return [normalize_report(row) for row in rows]


def account_stats(store: ReportStore, account_id: str) -> Dict[str, Any]:
    """
    Aggregate an account's final reports.

    Returns:
        Dict with ``total_emails`` (sum), ``avg`` (per-category mean count
        per report, rounded half up) and ``last_summary`` (newest report's text)
    """
    reports = list_reports(store, account_id, final_only=True)
    if not reports:
        return {
            "total_emails": 0,
            "avg": {category: 0 for category in CATEGORIES},
            "last_summary": "",
            "reports": 0,
        }

    sums = {category: 0 for category in CATEGORIES}
    for report in reports:
        for category in CATEGORIES:
            value = report["classification"].get(category, 0)
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                sums[category] += value

    count = len(reports)
    return {
        "total_emails": sum(report["total_emails"] for report in reports),
        "avg": {category: int(math.floor(total / count + 0.5)) for category, total in sums.items()},
        "last_summary": reports[0]["report_text"],
        "reports": count,
    }
