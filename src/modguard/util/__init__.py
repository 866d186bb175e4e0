"""
Utility helpers for ModGuard.

- **logger.py**: Centralized logging with colored prompt_toolkit console output
  and rotating per-session log files.
"""
