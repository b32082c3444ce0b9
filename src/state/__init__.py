"""Automation instance lifecycle.

Modules
───────
  machine — StateManager: transition graph, validators, listeners, cleanup
"""
