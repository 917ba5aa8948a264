"""
Deterministic oracle doubles for testing purposes.

Each double exposes the oracle service interface
``complete(system_instruction, user_text, max_output_tokens, temperature)``.
"""
import json
import re
import threading
from typing import Dict, List

BATCH_HEADER_RE = re.compile(r"^Analyze the following (\d+) emails:")
RECORD_LINE_RE = re.compile(r"^Record \d+ \(from: .*?, subject: .*?\): (.*)$", re.MULTILINE)


def make_records(count: int, start: int = 0) -> List[Dict[str, str]]:
    """Build ``count`` simple e-mail records."""
    return [
        {
            "from": f"user{i}@example.com",
            "subject": f"Subject {i}",
            "body": f"Message number {i}",
        }
        for i in range(start, start + count)
    ]


class ConservingOracle:
    """
    Well-behaved oracle double.

    Classification counts every record of a batch (records mentioning
    "thank" as positive, "refund" as negative, the rest neutral). Merging
    sums totals and category counts and concatenates highlights, so counts
    are conserved across merge rounds.
    """

    def __init__(self):
        self.calls = []
        self._lock = threading.Lock()

    @property
    def classify_calls(self) -> int:
        return sum(1 for role, _ in self.calls if role == "classify")

    @property
    def merge_calls(self) -> int:
        return sum(1 for role, _ in self.calls if role == "merge")

    def complete(self, system_instruction, user_text, max_output_tokens, temperature):
        header = BATCH_HEADER_RE.match(user_text)
        role = "classify" if header else "merge"
        with self._lock:
            self.calls.append((role, user_text))

        if header:
            return self._classify(int(header.group(1)), user_text)
        return self._merge(user_text)

    def _classify(self, count: int, user_text: str) -> str:
        bodies = RECORD_LINE_RE.findall(user_text)
        positive = sum(1 for body in bodies if "thank" in body.lower())
        negative = sum(1 for body in bodies if "refund" in body.lower())
        neutral = max(count - positive - negative, 0)
        return json.dumps({
            "total_emails": count,
            "classification": {
                "positive": positive,
                "negative": negative,
                "neutral": neutral,
                "other": 0,
            },
            "highlights": [f"batch of {count}"],
            "summary": f"{count} emails reviewed.",
        })

    def _merge(self, user_text: str) -> str:
        reports = [json.loads(line) for line in user_text.splitlines() if line.startswith("{")]
        classification = {"positive": 0, "negative": 0, "neutral": 0, "other": 0}
        highlights = []
        for report in reports:
            for category in classification:
                classification[category] += report["classification"][category]
            highlights.extend(report["highlights"])
        return json.dumps({
            "total_emails": sum(report["total_emails"] for report in reports),
            "classification": classification,
            "highlights": highlights,
            "summary": " ".join(report["summary"] for report in reports if report["summary"]),
        })


class FailingOracle:
    """Oracle double whose every call errors."""

    def __init__(self, error: Exception = None):
        self.error = error or RuntimeError("oracle down")
        self.call_count = 0

    def complete(self, system_instruction, user_text, max_output_tokens, temperature):
        self.call_count += 1
        raise self.error


class ScriptedOracle:
    """Oracle double replaying canned answers; Exception items are raised."""

    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    def complete(self, system_instruction, user_text, max_output_tokens, temperature):
        self.calls.append({
            "system_instruction": system_instruction,
            "user_text": user_text,
            "max_output_tokens": max_output_tokens,
            "temperature": temperature,
        })
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response
