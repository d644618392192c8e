from __future__ import annotations

from typing import Any, Dict, List, Optional

from analyst.tools.investigation import InvestigationResult


def _fmt_value(value: Any) -> str:
    if isinstance(value, float):
        return f"{value:,.0f}" if value.is_integer() else f"{value:,.2f}"
    return str(value)


def make_concise_answer(response) -> str:
    """One-line answer from the top chart point of an AnalysisResponse."""
    if response.fallback:
        return f"Answer: could not answer from the dataset ({response.fallback}); showing placeholder data."
    data: List[Dict[str, Any]] = response.data
    if not data:
        return "Answer: no matching rows."
    intent = response.interpretation.intent
    top = data[0]
    if intent == "trend":
        last = data[-1]
        return f"Answer: {top['name']} → {last['name']}: {_fmt_value(top['value'])} → {_fmt_value(last['value'])}"
    if intent == "ranking":
        return f"Answer: top = {top['name']} ({_fmt_value(top['value'])})"
    if len(data) == 1:
        return f"Answer: {top['name']} = {_fmt_value(top['value'])}"
    return f"Answer: {len(data)} groups; largest = {top['name']} ({_fmt_value(top['value'])})"


def confidence_level(overall: int) -> str:
    if overall >= 70:
        return "high"
    if overall >= 50:
        return "medium"
    return "low"


def summarize_investigation(result: Optional[InvestigationResult]) -> Dict[str, str]:
    """Evidence-backed root cause write-up in markdown."""
    if result is None or result.overall_confidence == 0:
        return {
            "summary": "Unable to determine root cause with available data.",
            "confidence": "low",
            "data_quality": "insufficient_evidence",
        }

    lines = ["### Root Cause Analysis", ""]
    if result.primary_cause:
        p = result.primary_cause
        lines += [f"**Primary Cause (Confidence: {p.confidence}%)**", p.hypothesis, "", f"Evidence: {p.conclusion}", ""]

    if result.secondary_causes:
        lines.append("**Contributing Factors:**")
        for i, s in enumerate(result.secondary_causes, 1):
            lines += [f"{i}. {s.hypothesis} (Confidence: {s.confidence}%)", f"   Evidence: {s.conclusion}", ""]

    if result.unproven_hypotheses:
        lines.append("**Additional Possibilities (Unproven):**")
        for u in result.unproven_hypotheses[:2]:
            lines += [f"- {u.hypothesis}", f"  {u.conclusion}", ""]

    return {
        "summary": "\n".join(lines).rstrip() + "\n",
        "confidence": confidence_level(result.overall_confidence),
        "data_quality": f"{result.overall_confidence}% overall confidence",
    }
