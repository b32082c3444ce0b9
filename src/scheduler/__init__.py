"""Scheduling: bounded priority queue, time-based schedules, worker pool.

Modules
───────
  queue     — PriorityQueue (max-priority first, FIFO among equals)
  schedules — schedule validation and next-run arithmetic
  workers   — WorkerRegistry with ``default`` fallback
  service   — Scheduler: tickers, dispatch, timeout, item retry
"""
