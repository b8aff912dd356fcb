#!/usr/bin/env python3
"""
Delete before/after media and feedback photos of completed or rejected tasks
older than TASK_MEDIA_RETENTION_DAYS (default 90).

Usage (cron, daily at 00:00):
    0 0 * * * cd /srv/fieldtask && python scripts/delete_old_task_media.py
"""
import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from fieldtask.config import settings
from fieldtask.logging import setup_logging
from fieldtask.services.maintenance import delete_old_task_media


def main():
    setup_logging()
    print("=" * 80)
    print(f"DELETE OLD TASK MEDIA (retention: {settings.task_media_retention_days} days)")
    print("=" * 80)
    delete_old_task_media()
    return 0


if __name__ == '__main__':
    exit(main())
