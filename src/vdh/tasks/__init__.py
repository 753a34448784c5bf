"""
Task subsystem.

Components:
- task_models.py: data structures (Task, TaskStatus, id generation)
- task_store.py: SQLite-backed storage + query/update helpers
- queue_manager.py: bounded-concurrency FIFO that runs downloads
- recovery.py: startup reconciliation of interrupted tasks
"""
