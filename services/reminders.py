"""Daily reminder sweep for loans due tomorrow or overdue."""

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from config import settings
from library import Library
from models import BorrowedBook
from services.email_service import send_email
from services.notifications import NotificationHub, notification_hub

logger = logging.getLogger(__name__)

DUE_SUBJECT = "Book Return Reminder"
OVERDUE_SUBJECT = "Overdue Book Notification"
REMINDER_JOB_ID = "daily-reminders"


def _due_body(loan: BorrowedBook) -> str:
    return (
        f"Dear {loan.user['name']},\n\n"
        f"This is a reminder that the book \"{loan.book['title']}\" is due tomorrow "
        f"({loan.due_date}). Please return it on time to avoid fines.\n"
    )


def _overdue_body(loan: BorrowedBook, daily_fine: float) -> str:
    return (
        f"Dear {loan.user['name']},\n\n"
        f"The book \"{loan.book['title']}\" was due on {loan.due_date} and is now overdue. "
        f"A fine of ${daily_fine:g} per day is charged until it is returned.\n"
    )


async def run_daily_reminders(library: Library, hub: Optional[NotificationHub] = None,
                              now: Optional[datetime] = None) -> Dict[str, Any]:
    """Email and push a notice for every loan due within a day or already overdue.

    A failed email is counted and the sweep moves on to the next loan.
    """
    hub = hub or notification_hub
    due_soon = await asyncio.to_thread(library.loans_due_soon, now)
    overdue = await asyncio.to_thread(library.overdue_loans, now)

    sent = failed = 0
    mails = [(loan, DUE_SUBJECT, _due_body(loan)) for loan in due_soon]
    mails += [(loan, OVERDUE_SUBJECT, _overdue_body(loan, library.daily_fine)) for loan in overdue]
    if not settings.enable_email_notifications:
        logger.info("Email notifications disabled, skipping %d reminder emails", len(mails))
        mails = []
    for loan, subject, body in mails:
        # smtplib blocks, keep it off the event loop
        if await asyncio.to_thread(send_email, loan.user["email"], subject, body):
            sent += 1
        else:
            failed += 1

    notified = len(await hub.send_due_notifications(due_soon))
    notified += len(await hub.send_overdue_notifications(overdue))

    summary = {
        "due_soon": len(due_soon),
        "overdue": len(overdue),
        "emails_sent": sent,
        "emails_failed": failed,
        "notified": notified,
    }
    logger.info("Reminder sweep finished: %s", summary)
    return summary


def create_scheduler(library: Library, hub: Optional[NotificationHub] = None) -> AsyncIOScheduler:
    """Build (but do not start) the scheduler running the sweep once a day in UTC."""
    scheduler = AsyncIOScheduler(timezone="UTC")
    scheduler.add_job(
        run_daily_reminders,
        CronTrigger(hour=settings.reminder_hour, minute=settings.reminder_minute, timezone="UTC"),
        args=[library, hub],
        id=REMINDER_JOB_ID,
        replace_existing=True,
        coalesce=True,
        misfire_grace_time=3600,
    )
    return scheduler
