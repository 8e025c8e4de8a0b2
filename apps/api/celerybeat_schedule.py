"""
Celery Beat Schedule Configuration

Defines periodic tasks that run on a schedule.
"""

from celery.schedules import crontab

# Schedule configuration
beat_schedule = {
    # Nightly pull of every active spot source - 03:00 UTC
    'sync-all-spot-sources': {
        'task': 'sync.sync_all_sources',
        'schedule': crontab(hour=3, minute=0),
    },
    # Repair pass over derived rating fields - Sunday 04:00 UTC
    'recompute-all-ratings': {
        'task': 'ratings.recompute_all',
        'schedule': crontab(hour=4, minute=0, day_of_week=0),
    },
    # Ranked query pivot - hourly
    'refresh-average-wilson': {
        'task': 'ratings.refresh_average_wilson',
        'schedule': crontab(minute=15),
    },
}
