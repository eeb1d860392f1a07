"""
Evaluation harness -- runs eval_questions.jsonl through the slot extractor
and generates analytics/reports/eval_report.md.

Checks:
  - Metric correctness   (extracted metric id matches expected, or none expected)
  - Time correctness     (extracted month matches expected)
  - Filter correctness   (dimension + canonical values match expected, in order)
  - Latency              (per-question ms)

The rules-only extractor is used (no intent classifier), so results are
deterministic and need no network.
"""
from __future__ import annotations

import json
import sys
import time
import datetime
from pathlib import Path
from typing import Any

from kpichat.copilot.intent_classifier import NullIntentClassifier
from kpichat.copilot.slot_extractor import SlotExtractor
from kpichat.governance.semantic_loader import load_catalog

EVAL_PATH = Path(__file__).resolve().parent / "eval_questions.jsonl"
REPORT_PATH = Path(__file__).resolve().parents[1] / "reports" / "eval_report.md"


def load_questions(path: Path = EVAL_PATH) -> list[dict[str, Any]]:
    lines = path.read_text(encoding="utf-8").splitlines()
    return [json.loads(line) for line in lines if line.strip()]


def run_one(q: dict[str, Any], extractor: SlotExtractor) -> dict[str, Any]:
    """Extract slots for a single question and compare against expectations."""
    question = q["question"]
    t0 = time.perf_counter()
    slots = extractor.extract(question)
    latency = int((time.perf_counter() - t0) * 1000)

    metric = slots.metric_id if slots else None
    month = slots.time_range.value if slots and slots.time_range else None
    dimension = slots.filter_dimension if slots else None
    values = list(slots.filter_values) if slots else []

    metric_ok = metric == q.get("expected_metric")
    time_ok = month == q.get("expected_time")
    filter_ok = (
        dimension == q.get("expected_filter_dimension")
        and values == q.get("expected_filter_values", [])
    )

    return {
        "question": question,
        "latency_ms": latency,
        "metric": metric,
        "time": month,
        "filter_dimension": dimension,
        "filter_values": values,
        "metric_ok": metric_ok,
        "time_ok": time_ok,
        "filter_ok": filter_ok,
        "success": metric_ok and time_ok and filter_ok,
    }


def evaluate(questions: list[dict[str, Any]], extractor: SlotExtractor | None = None) -> list[dict[str, Any]]:
    extractor = extractor or SlotExtractor(load_catalog(), classifier=NullIntentClassifier())
    return [run_one(q, extractor) for q in questions]


def _rate(ok: int, total: int) -> float:
    return (ok / total * 100) if total else 0


def generate_report(results: list[dict[str, Any]], questions: list[dict[str, Any]]) -> str:
    """Generate the Markdown eval report."""
    total = len(results)
    now = datetime.datetime.now().strftime("%Y-%m-%d %H:%M")

    successes = sum(1 for r in results if r["success"])
    metric_correct = sum(1 for r in results if r["metric_ok"])
    time_correct = sum(1 for r in results if r["time_ok"])
    filter_correct = sum(1 for r in results if r["filter_ok"])

    latencies = sorted(r["latency_ms"] for r in results)
    avg_lat = sum(latencies) / len(latencies) if latencies else 0
    max_lat = latencies[-1] if latencies else 0

    lines: list[str] = []
    lines.append("# Slot Extraction Evaluation Report")
    lines.append("")
    lines.append(f"> Generated: {now}  |  Questions: **{total}**  |  Mode: rules only (no classifier)")
    lines.append("")
    lines.append("---")
    lines.append("")
    lines.append("## Summary")
    lines.append("")
    lines.append("| Metric | Value |")
    lines.append("|--------|-------|")
    lines.append(f"| Overall success rate | **{_rate(successes, total):.0f}%** ({successes}/{total}) |")
    lines.append(f"| Metric correctness | **{_rate(metric_correct, total):.0f}%** ({metric_correct}/{total}) |")
    lines.append(f"| Time correctness | **{_rate(time_correct, total):.0f}%** ({time_correct}/{total}) |")
    lines.append(f"| Filter correctness | **{_rate(filter_correct, total):.0f}%** ({filter_correct}/{total}) |")
    lines.append(f"| Mean latency | {avg_lat:.0f} ms (max {max_lat} ms) |")
    lines.append("")
    lines.append("---")
    lines.append("")

    lines.append("## Per-Question Results")
    lines.append("")
    lines.append("| # | Question | Metric | Time | Filter | Pass |")
    lines.append("|---|----------|--------|------|--------|------|")
    for i, r in enumerate(results, 1):
        m = "OK" if r["metric_ok"] else "ERROR"
        t = "OK" if r["time_ok"] else "ERROR"
        f = "OK" if r["filter_ok"] else "ERROR"
        p = "OK" if r["success"] else "ERROR"
        lines.append(f"| {i} | {r['question']} | {m} | {t} | {f} | {p} |")
    lines.append("")

    lines.append("## Failures")
    lines.append("")
    failures = [(i, r, q) for i, (r, q) in enumerate(zip(results, questions), 1) if not r["success"]]
    if not failures:
        lines.append("None -- all questions handled correctly.")
        lines.append("")
    for i, r, q in failures:
        lines.append(f"### #{i}: {r['question']}")
        lines.append("")
        lines.append(f"- metric: got `{r['metric']}`, expected `{q.get('expected_metric')}`")
        lines.append(f"- time: got `{r['time']}`, expected `{q.get('expected_time')}`")
        lines.append(
            f"- filter: got `{r['filter_dimension']}` {r['filter_values']}, "
            f"expected `{q.get('expected_filter_dimension')}` {q.get('expected_filter_values', [])}"
        )
        lines.append("")

    return "\n".join(lines)


def run():
    # Ensure UTF-8 output on Windows (cp1252 can't handle CJK)
    if sys.platform == "win32":
        sys.stdout.reconfigure(encoding="utf-8", errors="replace")  # type: ignore[attr-defined]

    questions = load_questions()
    print(f"Loaded {len(questions)} eval questions.")
    print("Running evaluation...\n")

    results = evaluate(questions)
    for i, r in enumerate(results, 1):
        status = "PASS" if r["success"] else "FAIL"
        print(f"  [{i:2d}/{len(questions)}] {status}  {r['question']:<30}  {r['latency_ms']:>4d}ms")

    report = generate_report(results, questions)
    REPORT_PATH.parent.mkdir(parents=True, exist_ok=True)
    REPORT_PATH.write_text(report, encoding="utf-8")
    print(f"\nReport written to {REPORT_PATH}")

    total = len(results)
    successes = sum(1 for r in results if r["success"])
    print(f"\n{'='*50}")
    print(f"  Success: {successes}/{total} ({_rate(successes, total):.0f}%)")
    print(f"{'='*50}")


if __name__ == "__main__":
    run()
