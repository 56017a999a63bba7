from celery import Celery
from solusics.core.config import settings

celery = Celery('solusics_tasks', broker=settings.REDIS_URL, backend=settings.REDIS_URL)
celery.conf.timezone = 'Asia/Jakarta'
celery.conf.beat_schedule = {
    # server-side replacement of the UI's 5-second QR poll
    'poll-scanning-devices': {
        'task': 'solusics.tasks.device_tasks.poll_scanning_devices',
        'schedule': settings.STATUS_POLL_INTERVAL_SECONDS,
    },

    # unscanned QR codes -> expired
    'expire-stale-qr-codes-every-30s': {
        'task': 'solusics.tasks.device_tasks.expire_stale_qr_codes',
        'schedule': 30.0,
    },

    # actions interrupted between gateway call and local write
    'resume-pending-syncs-every-1min': {
        'task': 'solusics.tasks.device_tasks.resume_pending_syncs',
        'schedule': 60.0,
    },

    # closed intents past the retention window
    'prune-sync-intents-every-1h': {
        'task': 'solusics.tasks.device_tasks.prune_sync_intents',
        'schedule': 3600.0,
    },
}

# register tasks
from solusics.tasks import device_tasks  # noqa: E402, F401
