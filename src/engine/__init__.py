"""Alert remediation engine: alerts in, remediation workflows out.

Modules
───────
  engine    — AutomationEngine: wires detector, matcher, executor, scheduler, state
  loaders   — read alerts from CSV / JSONL files
  reporter  — write CSV and TXT snapshots of history, queue, states, patterns
  cli       — argparse entry-point (replay an alert file)
"""
