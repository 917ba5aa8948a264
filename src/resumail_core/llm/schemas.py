from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional, Union

CATEGORIES = ("positive", "negative", "neutral", "other")


class EmailRecord(BaseModel):
    """One input e-mail. Never persisted by the pipeline."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    sender: str = Field(default="", alias="from", description="Sender address or display name")
    subject: str = Field(default="")
    body: str = Field(default="", description="Plain-text body or snippet")

    def __init__(self, **data):
        # Mail-fetch payloads carry the text as "snippet"
        if "body" not in data and "snippet" in data:
            data["body"] = data.pop("snippet")
        super().__init__(**data)


class Classification(BaseModel):
    """Counts per sentiment category."""
    positive: int = Field(default=0, ge=0)
    negative: int = Field(default=0, ge=0)
    neutral: int = Field(default=0, ge=0)
    other: int = Field(default=0, ge=0)

    def total(self) -> int:
        return self.positive + self.negative + self.neutral + self.other


class HighlightItem(BaseModel):
    """Recurring point found across merged reports."""
    text: str
    count: int = Field(default=0, ge=0)
    pct: str = Field(default="", description="Share of emails, e.g. '12%'")


Highlight = Union[str, HighlightItem]


class AnalysisResult(BaseModel):
    """Normalized output of a classification or merge round."""
    total_emails: int = Field(default=0, ge=0)
    classification: Classification = Field(default_factory=Classification)
    highlights: List[Highlight] = Field(default_factory=list)
    summary: str = Field(default="")

    @classmethod
    def fallback(cls, total_emails: int, summary: str = "") -> "AnalysisResult":
        """Result used when the oracle answer is unusable."""
        return cls(total_emails=max(total_emails, 0), summary=summary)


class FinalReport(BaseModel):
    """Consolidated result with provenance links to every mini-report."""
    id: int
    account_id: str
    result: AnalysisResult
    mini_report_ids: List[int] = Field(default_factory=list)


class AnalysisOutcome(BaseModel):
    """What ``analyze`` hands back to the caller."""
    final_report: FinalReport
    remaining_balance: int
    mini_report_ids: List[int] = Field(default_factory=list)
    trace_id: Optional[str] = None
    degraded_batches: int = Field(default=0, description="Batches whose oracle call failed or was unparseable")
