import datetime
import smtplib
import threading

from coursehub import db, notifications
from coursehub.models import Assignment

from conftest import drain_notifications, enroll, make_course, make_user


def test_notify_course_sends_one_email_per_student(app, course, student, sent_emails):
    enroll(student, course)
    enroll(make_user("zoe", "Student"), course)

    futures = notifications.notify_course(course.id, "Hello", "Body")
    assert len(futures) == 2
    drain_notifications()
    assert sorted(m["to"] for m in sent_emails) == ["sam@x.com", "zoe@x.com"]
    assert all(m["subject"] == "Hello" for m in sent_emails)


def test_notify_course_with_no_students_sends_nothing(app, course, sent_emails):
    assert notifications.notify_course(course.id, "Hello", "Body") == []


def test_one_failed_send_does_not_block_the_others(app, course, student, monkeypatch):
    enroll(student, course)
    enroll(make_user("zoe", "Student"), course)
    delivered = []

    def flaky(settings, to_email, subject, text_body, html_body=None):
        if to_email == "sam@x.com":
            raise RuntimeError("provider down")
        delivered.append(to_email)
        return True

    monkeypatch.setattr("coursehub.notifications.send_email", flaky)
    futures = notifications.notify_course(course.id, "Hello", "Body")
    drain_notifications()
    assert delivered == ["zoe@x.com"]
    assert sorted(f.result() for f in futures) == [False, True]


def test_send_email_without_credentials_is_skipped():
    assert notifications.send_email({"sender": None, "password": None}, "a@x.com", "s", "b") is False


def test_send_email_reports_smtp_failure(monkeypatch):
    class BrokenSMTP:
        def __init__(self, *args, **kwargs):
            raise smtplib.SMTPConnectError(421, "unavailable")

    monkeypatch.setattr(smtplib, "SMTP_SSL", BrokenSMTP)
    settings = {"server": "smtp.test", "port": 465, "sender": "me@x.com", "password": "secret"}
    assert notifications.send_email(settings, "a@x.com", "s", "b") is False


def test_due_date_sweep_emails_students_of_assignments_due_tomorrow(app, teacher, course, student, sent_emails):
    enroll(student, course)
    other_course = make_course(teacher, "Other")
    outsider = make_user("oli", "Student")
    enroll(outsider, other_course)

    today = datetime.date(2026, 10, 19)
    db.session.add_all([
        Assignment(course_id=course.id, title="Due tomorrow", points=10, due_date=today + datetime.timedelta(days=1)),
        Assignment(course_id=course.id, title="Due later", points=10, due_date=today + datetime.timedelta(days=2)),
        Assignment(course_id=other_course.id, title="Due today", points=10, due_date=today),
    ])
    db.session.commit()

    count = notifications.run_due_date_sweep(app, today=today)
    assert count == 1
    assert [m["to"] for m in sent_emails] == ["sam@x.com"]
    assert "Due tomorrow" in sent_emails[0]["subject"]


def test_due_date_sweep_is_single_flight(app):
    assert notifications._sweep_lock.acquire(blocking=False)
    try:
        assert notifications.run_due_date_sweep(app) is None
    finally:
        notifications._sweep_lock.release()
    assert notifications.run_due_date_sweep(app) == 0


def test_seconds_until_next_run():
    now = datetime.datetime(2026, 10, 19, 8, 30)
    assert notifications.seconds_until(now, 9, 0) == 30 * 60
    later = datetime.datetime(2026, 10, 19, 9, 0)
    assert notifications.seconds_until(later, 9, 0) == 24 * 3600


def test_scheduler_thread_starts_once(app, monkeypatch):
    monkeypatch.setattr(notifications, "_scheduler_thread", None)
    stop = notifications.start_reminder_scheduler(app)
    try:
        assert notifications.start_reminder_scheduler(app) is stop
        assert isinstance(stop, threading.Event)
    finally:
        stop.set()
        notifications._scheduler_thread.join(timeout=5)
