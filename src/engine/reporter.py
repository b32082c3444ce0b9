"""Звітування: запис CSV та TXT зі стану рушія."""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

import pandas as pd

from src.contracts.alert import format_timestamp
from src.engine.engine import AutomationEngine

log = logging.getLogger(__name__)

HISTORY_COLUMNS = ["alert_id", "alert_type", "alert_priority", "automations", "succeeded", "failed", "timestamp"]
EXECUTION_COLUMNS = [
    "id", "automation_id", "automation_type", "priority", "status", "attempts",
    "created", "modified", "alert_id", "schedule_id", "error",
]
STATE_COLUMNS = ["instance_id", "previous_state", "current_state", "timestamp"]


def _atomic_write(path: str | Path, content: str) -> None:
    """Атомарно записує content у файл path."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=str(target.parent), prefix=f".{target.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(content)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp, target)
    except BaseException:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise


# ═══════════════════════════════════════════════════════════════════════════
#  DataFrames
# ═══════════════════════════════════════════════════════════════════════════


def history_frame(engine: AutomationEngine) -> pd.DataFrame:
    return pd.DataFrame([h.to_dict() for h in engine.get_history()], columns=HISTORY_COLUMNS)


def executions_frame(engine: AutomationEngine) -> pd.DataFrame:
    items = engine.scheduler.get_history() + engine.get_running() + engine.get_queue()
    return pd.DataFrame([i.to_dict() for i in items], columns=EXECUTION_COLUMNS)


def states_frame(engine: AutomationEngine) -> pd.DataFrame:
    records = sorted(engine.get_states().values(), key=lambda r: r.timestamp)
    return pd.DataFrame([r.to_dict() for r in records], columns=STATE_COLUMNS)


def patterns_frame(engine: AutomationEngine) -> pd.DataFrame:
    rows = [
        {"kind": "pattern", "key": p.key, "occurrences": p.support, "score": round(p.confidence, 4)}
        for p in engine.get_patterns()
    ]
    rows += [
        {"kind": "sequence", "key": s.key, "occurrences": s.count, "score": round(s.confidence, 4)}
        for s in engine.get_sequences()
    ]
    rows += [
        {"kind": "correlation", "key": c.key, "occurrences": c.cooccurrences, "score": round(c.correlation, 4)}
        for c in engine.get_correlations()
    ]
    df = pd.DataFrame(rows, columns=["kind", "key", "occurrences", "score"])
    return df.sort_values(["kind", "score", "key"], ascending=[True, False, True], ignore_index=True)


# ═══════════════════════════════════════════════════════════════════════════
#  Writers
# ═══════════════════════════════════════════════════════════════════════════


def render_summary(engine: AutomationEngine) -> str:
    history = history_frame(engine)
    executions = executions_frame(engine)
    states = states_frame(engine)
    patterns = patterns_frame(engine)

    lines: list[str] = []
    lines.append("=" * 60)
    lines.append("  Alert Remediation Report")
    lines.append("=" * 60)
    lines.append("")

    lines.append("--- Alerts ---")
    lines.append(f"  Alerts with matches:  {len(history)}")
    if not history.empty:
        by_type = history.groupby("alert_type")["alert_id"].count().sort_index()
        lines.append("  By type:              " + ", ".join(f"{k}={v}" for k, v in by_type.items()))
        lines.append(f"  Automation successes: {int(history['succeeded'].sum())}")
        lines.append(f"  Automation failures:  {int(history['failed'].sum())}")
    lines.append("")

    lines.append("--- Queue executions ---")
    lines.append(f"  Items total:          {len(executions)}")
    if not executions.empty:
        by_status = executions["status"].value_counts().sort_index()
        lines.append("  By status:            " + ", ".join(f"{k}={v}" for k, v in by_status.items()))
        lines.append(f"  Mean attempts:        {executions['attempts'].mean():.2f}")
    lines.append("")

    lines.append("--- Lifecycle ---")
    lines.append(f"  Tracked instances:    {len(states)}")
    if not states.empty:
        by_state = states["current_state"].value_counts().sort_index()
        lines.append("  By state:             " + ", ".join(f"{k}={v}" for k, v in by_state.items()))
    lines.append("")

    lines.append("--- Patterns (top 5 per kind) ---")
    for kind, group in patterns.groupby("kind", sort=True):
        for row in group.head(5).itertuples(index=False):
            lines.append(f"  [{kind}] {row.key}  occurrences={row.occurrences}  score={row.score:.3f}")
    if patterns.empty:
        lines.append("  none")
    lines.append("")
    lines.append(f"Generated {format_timestamp(engine.clock())}")
    lines.append("=" * 60)
    return "\n".join(lines) + "\n"


def write_reports(engine: AutomationEngine, out_dir: str | Path) -> dict[str, Path]:
    """Записує history/executions/states/patterns CSV та report.txt."""
    out = Path(out_dir)
    frames = {
        "history.csv": history_frame(engine),
        "executions.csv": executions_frame(engine),
        "states.csv": states_frame(engine),
        "patterns.csv": patterns_frame(engine),
    }
    written: dict[str, Path] = {}
    for name, df in frames.items():
        path = out / name
        _atomic_write(path, df.to_csv(index=False))
        written[name] = path
        log.info("Wrote %s (%d rows)", path, len(df))

    report = out / "report.txt"
    _atomic_write(report, render_summary(engine))
    written["report.txt"] = report
    log.info("Wrote report → %s", report)
    return written
