"""Workflow execution.

Modules
───────
  actions  — ActionRegistry and built-in actions
  executor — WorkflowExecutor: ordered steps, fan-out, whole-workflow retry
"""
