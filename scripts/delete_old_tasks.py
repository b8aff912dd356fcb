#!/usr/bin/env python3
"""
Delete completed or rejected tasks older than TASK_RETENTION_DAYS (default 365),
together with the media they own on the media host.

Usage (cron, daily at 01:00):
    0 1 * * * cd /srv/fieldtask && python scripts/delete_old_tasks.py
"""
import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from fieldtask.config import settings
from fieldtask.logging import setup_logging
from fieldtask.services.maintenance import delete_old_tasks


def main():
    setup_logging()
    print("=" * 80)
    print(f"DELETE OLD TASKS (retention: {settings.task_retention_days} days)")
    print("=" * 80)
    delete_old_tasks()
    return 0


if __name__ == '__main__':
    exit(main())
