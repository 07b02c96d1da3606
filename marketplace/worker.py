"""
Celery worker entry point
Handles booking follow-ups and the periodic batch jobs
"""
import logging
from celery.signals import worker_ready, worker_shutdown

from marketplace.config.celery_config import celery_app
from marketplace.config.settings import get_settings
from marketplace.utils.my_logging import setup_logging

# Setup logging first
settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)


@worker_ready.connect
def worker_ready_handler(sender=None, **kwargs):
    """Handle worker startup"""
    logger.info("🚀 Celery worker ready!")
    logger.info(f"📋 Registered tasks: {[t for t in celery_app.tasks.keys() if t.startswith('marketplace.')]}")


@worker_shutdown.connect
def worker_shutdown_handler(sender=None, **kwargs):
    """Handle worker shutdown"""
    logger.info("🛑 Celery worker shutting down...")


if __name__ == "__main__":
    # Run worker (with embedded beat) directly
    celery_app.start([
        'worker',
        '--beat',
        '--loglevel=info',
        '--concurrency=4',
        '--max-tasks-per-child=1000'
    ])
