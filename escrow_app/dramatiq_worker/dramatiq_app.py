import logging

import dramatiq
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from dramatiq.brokers.redis import RedisBroker
from dramatiq.middleware import AgeLimit, AsyncIO, Retries, TimeLimit

from core.job_queue import CLOSE_RETRACTION_WINDOWS, PURGE_SIGNING_SECRETS, SWEEP_NOTICE_PERIODS
from core.settings import settings
from dramatiq_tasks.contract_tasks import (
    create_close_retraction_windows_task,
    create_notice_sweep_task,
    create_purge_signing_secrets_task,
    create_seal_contract_task,
)
from dramatiq_tasks.notification_tasks import create_notify_party_task
from dramatiq_tasks.receipt_tasks import create_receipt_task

logger = logging.getLogger("jobs.worker")


class DramatiqManager:
    def __init__(self):
        self.REDIS_URL = settings.DRAMATIQ_REDIS_URL

        self.broker = RedisBroker(url=self.REDIS_URL)
        self.broker.add_middleware(AgeLimit(max_age=3600000))
        self.broker.add_middleware(TimeLimit(time_limit=600000))
        self.broker.add_middleware(Retries(max_retries=5))
        self.broker.add_middleware(AsyncIO())

        dramatiq.set_broker(self.broker)

        self._register_tasks()

        self.scheduler = BackgroundScheduler(timezone="UTC")
        self._register_cron_jobs()
        self.scheduler.start()

    def _register_tasks(self):
        create_seal_contract_task()
        create_notify_party_task()
        create_receipt_task()
        create_notice_sweep_task()
        create_purge_signing_secrets_task()
        create_close_retraction_windows_task()

    def _register_cron_jobs(self):
        self.scheduler.add_job(
            func=lambda: self.delay(SWEEP_NOTICE_PERIODS),
            trigger=CronTrigger(hour=0, minute=15),
            id="sweep-notice-periods-daily",
            replace_existing=True,
        )

        self.scheduler.add_job(
            func=lambda: self.delay(PURGE_SIGNING_SECRETS),
            trigger=CronTrigger(minute=0),
            id="purge-signing-secrets-hourly",
            replace_existing=True,
        )

        self.scheduler.add_job(
            func=lambda: self.delay(CLOSE_RETRACTION_WINDOWS),
            trigger=CronTrigger(minute="*/15"),
            id="close-retraction-windows",
            replace_existing=True,
        )

    def connect(self):
        logger.info("Connecting to Dramatiq broker")
        try:
            self.broker.client.ping()
            logger.info("Dramatiq connected successfully.")
        except Exception:
            logger.exception("Dramatiq connection failed")

    def delay(self, actor_name: str, *args, **kwargs):
        actor = self.broker.get_actor(actor_name)
        return actor.send(*args, **kwargs)


dramatiq_app = DramatiqManager()
