import pytest
from werkzeug.security import generate_password_hash

from coursehub import create_app, db
from coursehub.models import Course, Enrollment, User


@pytest.fixture
def app(tmp_path):
    app = create_app({
        "TESTING": True,
        "SECRET_KEY": "test",
        "SQLALCHEMY_DATABASE_URI": "sqlite://",
        "UPLOAD_FOLDER": str(tmp_path / "uploads"),
        "ENABLE_SCHEDULER": False,
        "GROQ_API_KEY": None,
        "SENDER_EMAIL": None,
    })
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def sent_emails(monkeypatch):
    """Capture outgoing email instead of talking to SMTP."""
    sent = []

    def fake_send(settings, to_email, subject, text_body, html_body=None):
        sent.append({"to": to_email, "subject": subject, "body": text_body})
        return True

    monkeypatch.setattr("coursehub.notifications.send_email", fake_send)
    return sent


def make_user(username, role, email=None, password="pw"):
    user = User(username=username, full_name=username.title(), email=email or f"{username}@x.com",
                password_hash=generate_password_hash(password), role=role)
    db.session.add(user)
    db.session.commit()
    return user


def make_course(teacher, title="Python 101"):
    course = Course(title=title, description="Intro", duration="6 weeks", teacher_id=teacher.id)
    db.session.add(course)
    db.session.commit()
    return course


def enroll(student, course):
    db.session.add(Enrollment(student_id=student.id, course_id=course.id))
    db.session.commit()


def login_as(client, user):
    with client.session_transaction() as sess:
        sess["user"] = user.to_session()


@pytest.fixture
def teacher(app):
    return make_user("tina", "Teacher")


@pytest.fixture
def student(app):
    return make_user("sam", "Student")


@pytest.fixture
def course(teacher):
    return make_course(teacher)


def drain_notifications():
    """Block until every queued email send has run."""
    from coursehub import notifications
    executor = notifications._executor
    if executor is not None:
        executor.shutdown(wait=True)
        notifications._executor = None
