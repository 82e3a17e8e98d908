"""
Reminder Engine — Entry Point.

Single entry point: `python main.py` starts the nightly sweep scheduler.
"""

from reminder_engine.core.sweep import main

if __name__ == "__main__":
    main()
