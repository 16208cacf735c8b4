import logging

from apscheduler.schedulers.background import BackgroundScheduler

from config import settings
from database import SessionLocal
from modules.signatures.services.signature_request_service import SignatureRequestService

logger = logging.getLogger(__name__)


def start_signature_jobs(dispatcher=None, locks=None) -> BackgroundScheduler:
    scheduler = BackgroundScheduler()

    def reminder_job():
        with SessionLocal() as session:
            service = SignatureRequestService(session, dispatcher=dispatcher, locks=locks)
            try:
                service.run_scheduled_reminders()
            except Exception:
                logger.exception("Scheduled reminder run failed")

    scheduler.add_job(reminder_job, 'interval', minutes=settings.REMINDER_JOB_INTERVAL_MINUTES,
                      id="signature-reminders", max_instances=1, coalesce=True)

    scheduler.start()
    logger.info("Signature jobs started (reminders every %d min)", settings.REMINDER_JOB_INTERVAL_MINUTES)
    return scheduler


def stop_signature_jobs(scheduler: BackgroundScheduler):
    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
