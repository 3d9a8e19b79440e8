"""
tasktrail: task lifecycle tracking for coding agents.

Tasks move through a small state machine that stays in step with the
filesystem and with git: staging a task's files completes it, committing
them archives it.
"""

__version__ = "0.1.0"
