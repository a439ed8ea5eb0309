"""Outbound email: course fan-out after writes and the daily due-date sweep."""
import logging
import smtplib
import ssl
import threading
from concurrent.futures import ThreadPoolExecutor, wait
from datetime import date, datetime, timedelta
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from coursehub import db
from coursehub.models import Assignment, Course, Enrollment, User

logger = logging.getLogger(__name__)

_executor = None
_executor_lock = threading.Lock()
_sweep_lock = threading.Lock()
_scheduler_thread = None


def _get_executor(workers=8):
    global _executor
    with _executor_lock:
        if _executor is None:
            _executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="notify")
        return _executor


def mail_settings(app=None):
    config = (app or current_app).config
    return {
        "server": config.get("SMTP_SERVER"),
        "port": config.get("SMTP_PORT"),
        "sender": config.get("SENDER_EMAIL"),
        "password": config.get("SENDER_PASSWORD"),
    }


def send_email(settings, to_email, subject, text_body, html_body=None):
    """Send one message. Returns True on success, False otherwise (never raises)."""
    if not settings.get("sender") or not settings.get("password"):
        logger.warning("Email not configured. Skipping '%s' to %s", subject, to_email)
        return False

    try:
        msg = MIMEMultipart('alternative')
        msg['From'] = settings["sender"]
        msg['To'] = to_email
        msg['Subject'] = subject
        msg.attach(MIMEText(text_body, 'plain'))
        msg.attach(MIMEText(html_body or f"<p>{escape(text_body)}</p>", 'html'))

        context = ssl.create_default_context()
        # Timeout prevents a stuck provider from holding a worker
        with smtplib.SMTP_SSL(settings["server"], settings["port"], context=context, timeout=10) as server:
            server.login(settings["sender"], settings["password"])
            server.sendmail(settings["sender"], to_email, msg.as_string())
        return True
    except (smtplib.SMTPException, OSError) as e:
        logger.error("Failed to send email to %s: %s", to_email, e)
        return False


def _safe_send(settings, to_email, subject, text_body, html_body):
    try:
        return send_email(settings, to_email, subject, text_body, html_body)
    except Exception:
        logger.exception("Unexpected error sending email to %s", to_email)
        return False


def dispatch(recipients, subject, text_body, html_body=None, settings=None):
    """Queue one send per recipient on the shared pool and return the futures."""
    settings = settings or mail_settings()
    executor = _get_executor(current_app.config.get("NOTIFY_WORKERS", 8))
    return [executor.submit(_safe_send, settings, email, subject, text_body, html_body)
            for email in recipients]


def course_recipients(course_id, exclude_user_id=None):
    query = (db.session.query(User.email)
             .join(Enrollment, Enrollment.student_id == User.id)
             .filter(Enrollment.course_id == course_id))
    if exclude_user_id is not None:
        query = query.filter(User.id != exclude_user_id)
    return [row.email for row in query.all()]


def notify_course(course_id, subject, body, exclude_user_id=None):
    """Email every enrolled student of a course. Fire-and-forget.

    Runs after the triggering write has committed, so a failed recipient
    lookup is logged and never reaches the caller.
    """
    try:
        recipients = course_recipients(course_id, exclude_user_id)
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Could not load recipients for course %s: %s", course_id, subject)
        return []
    if not recipients:
        return []
    logger.info("Notifying %d students of course %s: %s", len(recipients), course_id, subject)
    return dispatch(recipients, subject, body)


def due_tomorrow_pairs(today=None):
    tomorrow = (today or date.today()) + timedelta(days=1)
    return (db.session.query(Assignment.title, Assignment.due_date, Course.title.label("course_title"),
                             User.email)
            .join(Course, Course.id == Assignment.course_id)
            .join(Enrollment, Enrollment.course_id == Assignment.course_id)
            .join(User, User.id == Enrollment.student_id)
            .filter(Assignment.due_date == tomorrow)
            .all())


def run_due_date_sweep(app, today=None):
    """Send one reminder per (assignment, enrolled student) due tomorrow.

    Returns the number of reminders attempted, or None when another sweep
    is still running.
    """
    if not _sweep_lock.acquire(blocking=False):
        logger.warning("Due-date sweep already running; skipping this run")
        return None
    try:
        with app.app_context():
            pairs = due_tomorrow_pairs(today)
            futures = []
            for row in pairs:
                subject = f"Reminder: {row.title} is due tomorrow"
                body = (f"The assignment '{row.title}' in {row.course_title} "
                        f"is due on {row.due_date.isoformat()}.")
                futures.extend(dispatch([row.email], subject, body, settings=mail_settings(app)))
            wait(futures)
            sent = sum(1 for f in futures if f.result())
            logger.info("Due-date sweep: %d reminders, %d delivered", len(futures), sent)
            return len(futures)
    finally:
        _sweep_lock.release()


def seconds_until(now, hour, minute):
    target = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return (target - now).total_seconds()


def _scheduler_loop(app, stop_event):
    hour = app.config['REMINDER_HOUR']
    minute = app.config['REMINDER_MINUTE']
    while not stop_event.is_set():
        delay = seconds_until(datetime.now(), hour, minute)
        if stop_event.wait(delay):
            break
        try:
            run_due_date_sweep(app)
        except Exception:
            logger.exception("Due-date sweep failed")


def start_reminder_scheduler(app):
    """Start the daily sweep thread once per process; returns its stop event."""
    global _scheduler_thread
    if _scheduler_thread is not None and _scheduler_thread.is_alive():
        return _scheduler_thread.stop_event
    stop_event = threading.Event()
    _scheduler_thread = threading.Thread(target=_scheduler_loop, args=(app, stop_event),
                                         name="due-date-sweep", daemon=True)
    _scheduler_thread.stop_event = stop_event
    _scheduler_thread.start()
    logger.info("Due-date reminders scheduled daily at %02d:%02d",
                app.config['REMINDER_HOUR'], app.config['REMINDER_MINUTE'])
    return stop_event
