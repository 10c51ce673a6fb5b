"""
Task subsystem.

Components:
- task_models.py: data structures (Task, TimerStatus, Priority, Category) + row codec
- timer_engine.py: pure timer evaluation and remaining-time projections
- task_store.py: authoritative in-memory collection, commands and observers
- task_scheduler.py: 1-second loop that expires running timers
- task_api.py: read helpers used by the presentation layer
"""
