# app/tasks/__init__.py
"""
Background maintenance jobs, run in-process by MaintenanceScheduler.

Jobs:
- Sweep expired conversation sessions
- Monitor booked flights for changes
- Schedule travel reminders
- Dispatch due reminders
"""
