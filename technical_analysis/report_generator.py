"""
Report Generator for Technical Analysis Results

Renders an AnalysisResult, optionally with its MarketContext and the
MultiIndicatorExplanation built for it, in two formats:
    - Text: terminal-friendly summary with one block per indicator
    - JSON: machine-readable structured data

Both renderers only read the objects they are given.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from technical_analysis.config import VERSION
from technical_analysis.engine import AnalysisResult
from technical_analysis.explanations import MultiIndicatorExplanation
from technical_analysis.market_context import MarketContext

logger = logging.getLogger(__name__)

RULE = "=" * 72
THIN_RULE = "-" * 72


# =============================================================================
# TEXT REPORT
# =============================================================================

def format_text_report(
    result: AnalysisResult,
    context: Optional[MarketContext] = None,
    explanations: Optional[MultiIndicatorExplanation] = None
) -> str:
    """Plain-text report for terminal output."""
    summary = result.summary
    as_of = result.timestamp.date() if hasattr(result.timestamp, 'date') else result.timestamp
    price = f"${result.last_close:,.2f}" if result.last_close is not None else "n/a"

    lines: List[str] = [
        RULE,
        f"  TECHNICAL ANALYSIS: {result.symbol}",
        f"  As of {as_of or 'n/a'} | Last close {price}",
        RULE,
        "",
        f"  Overall:    {summary.overall.value.upper()} "
        f"(strength {summary.strength:.0%}, confidence {summary.confidence:.0%})",
        f"  Trend:      {summary.trend_direction.value}",
        f"  Momentum:   {summary.momentum.value}",
        f"  Volatility: {summary.volatility.value}",
        f"  Signals:    {summary.buy_count} buy / {summary.sell_count} sell / {summary.hold_count} hold",
    ]

    if context is not None:
        lines += [
            "",
            f"  Market:     {context.condition.value} market, {context.volatility.value} volatility, "
            f"{context.market_cap.value} cap, sector {context.sector}",
        ]

    lines += ["", THIN_RULE, "  INDICATORS", THIN_RULE]
    if not result.signals:
        lines.append("  Not enough price history for any indicator.")
    for sig in result.signals:
        lines.append(
            f"  {sig.indicator:<18} {sig.signal.value.upper():<5} "
            f"{sig.strength:>4.0%}  value {sig.value:>12.2f}  {sig.description}"
        )

    if explanations is not None and explanations.explanations:
        lines += ["", THIN_RULE, "  INTERPRETATION", THIN_RULE]
        for exp in explanations.explanations:
            lines += [
                f"  [{exp.indicator}] risk {exp.risk_level.value}, "
                f"confidence {exp.confidence:.0%}, timeframe {exp.timeframe}",
                f"    {exp.explanation}",
                f"    -> {exp.actionable_insight}",
                "",
            ]

    conflicts = explanations.conflicts if explanations is not None else result.conflicts
    if conflicts:
        lines += [THIN_RULE, "  CONFLICTS", THIN_RULE]
        lines += [f"  - {c}" for c in conflicts]

    lines.append(RULE)
    return "\n".join(lines)


# =============================================================================
# JSON REPORT
# =============================================================================

def generate_json_report(
    result: AnalysisResult,
    context: Optional[MarketContext] = None,
    explanations: Optional[MultiIndicatorExplanation] = None
) -> Dict[str, Any]:
    """Comprehensive JSON-safe report for programmatic consumption."""
    analysis = result.to_dict()
    summary = result.summary

    report: Dict[str, Any] = {
        "metadata": {
            "symbol": result.symbol,
            "as_of": analysis["timestamp"],
            "generated_at": datetime.now().isoformat(),
            "report_version": VERSION,
        },
        "executive_summary": {
            "overall_signal": {
                "direction": summary.overall.value,
                "strength": round(summary.strength, 4),
                "confidence": round(summary.confidence, 4),
            },
            "last_close": result.last_close,
            "signal_distribution": {
                "buy": summary.buy_count,
                "sell": summary.sell_count,
                "hold": summary.hold_count,
            },
        },
        "summary": analysis["summary"],
        "signals": analysis["signals"],
        "conflicts": analysis["conflicts"],
        "indicators": analysis["indicators"],
    }

    if context is not None:
        report["market_context"] = context.to_dict()
    if explanations is not None:
        report["explanations"] = explanations.to_dict()

    return report


def write_json_report(
    result: AnalysisResult,
    output_path: Union[str, Path],
    context: Optional[MarketContext] = None,
    explanations: Optional[MultiIndicatorExplanation] = None
) -> Path:
    """Write the JSON report to ``output_path`` (parent dirs created)."""
    output_path = Path(output_path)
    report = generate_json_report(result, context, explanations)

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, 'w', encoding='utf-8') as f:
        json.dump(report, f, indent=2, default=str)
    logger.info(f"Generated JSON: {output_path}")
    return output_path
