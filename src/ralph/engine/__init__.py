"""Orchestration engine: planner, developer/reviewer loops and resume logic.

Drives agent sessions task by task, persists every session in the record
store and publishes progress as typed events.
"""
