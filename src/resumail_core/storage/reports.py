"""Report rows: per-batch mini-reports and consolidated final reports."""

from typing import Any, Dict, List, Optional, Sequence, Tuple

import structlog
from sqlalchemy import insert, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from resumail_core.errors import StorageError
from resumail_core.llm.schemas import AnalysisResult
from resumail_core.storage.database import reports, transaction

logger = structlog.get_logger()


def _result_row(account_id: str, result: AnalysisResult) -> Dict[str, Any]:
    data = result.model_dump()
    return {
        "account_id": account_id,
        "total_emails": data["total_emails"],
        "classification": data["classification"],
        "highlights": data["highlights"],
        "summary": data["summary"],
        "report_text": data["summary"],
    }


class ReportStore:
    """Insert/select access to the ``reports`` table."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def insert_report(self, row: Dict[str, Any]) -> int:
        """Insert one row and return its generated id."""
        try:
            with transaction(self.engine) as conn:
                result = conn.execute(insert(reports).values(**row))
                return result.inserted_primary_key[0]
        except SQLAlchemyError as e:
            raise StorageError("insert_report", str(e)) from e

    def select_reports(
        self,
        account_id: Optional[str] = None,
        is_final: Optional[bool] = None,
        ids: Optional[Sequence[int]] = None,
    ) -> List[Dict[str, Any]]:
        """Rows matching every given filter, newest first."""
        query = select(reports)
        if account_id is not None:
            query = query.where(reports.c.account_id == account_id)
        if is_final is not None:
            query = query.where(reports.c.is_final == is_final)
        if ids is not None:
            if not ids:
                return []
            query = query.where(reports.c.id.in_(list(ids)))
        query = query.order_by(reports.c.created_at.desc(), reports.c.id.desc())

        try:
            with self.engine.connect() as conn:
                return [dict(row._mapping) for row in conn.execute(query)]
        except SQLAlchemyError as e:
            raise StorageError("select_reports", str(e)) from e

    def save_mini(self, account_id: str, batch_result: AnalysisResult, batch_index: int = None) -> int:
        row = _result_row(account_id, batch_result)
        row.update(is_final=False, batch_index=batch_index)
        return self.insert_report(row)

    def save_final(self, account_id: str, final_result: AnalysisResult, mini_ids: Sequence[int]) -> int:
        """Persist the final report with write-once links to its mini-reports."""
        row = _result_row(account_id, final_result)
        row.update(is_final=True, mini_report_ids=list(mini_ids))
        return self.insert_report(row)

    def get_report(self, report_id: int) -> Optional[Dict[str, Any]]:
        rows = self.select_reports(ids=[report_id])
        return rows[0] if rows else None

    def get_with_minis(self, report_id: int) -> Tuple[Optional[Dict[str, Any]], List[Dict[str, Any]]]:
        """
        Load a final report together with its constituent mini-reports.

        Mini-reports come back in provenance order; ids that no longer
        resolve are skipped.
        """
        report = self.get_report(report_id)
        if report is None:
            return None, []

        mini_ids = report.get("mini_report_ids") or []
        if not isinstance(mini_ids, list) or not mini_ids:
            return report, []

        by_id = {row["id"]: row for row in self.select_reports(ids=mini_ids)}
        minis = [by_id[mini_id] for mini_id in mini_ids if mini_id in by_id]
        if len(minis) != len(mini_ids):
            logger.warning("Final report references missing mini-reports",
                           report_id=report_id,
                           expected=len(mini_ids),
                           found=len(minis))
        return report, minis
