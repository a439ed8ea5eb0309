"""Registration, login and the session/role checks used by every route."""
import logging
from functools import wraps

from flask import session, redirect, url_for, flash
from sqlalchemy.exc import IntegrityError
from werkzeug.security import generate_password_hash, check_password_hash

from coursehub import db
from coursehub.errors import DuplicateOrInvalidInput, InvalidCredentials, Forbidden
from coursehub.models import User, Enrollment

logger = logging.getLogger(__name__)

ROLES = ("Teacher", "Student")

# Compared against when the email is unknown so both failure paths hash once.
_DUMMY_HASH = generate_password_hash("coursehub-dummy-password")


def register_user(username, full_name, email, phone, age, password, role):
    username = (username or "").strip()
    full_name = (full_name or "").strip()
    email = (email or "").strip().lower()
    if not (username and full_name and email and password) or role not in ROLES:
        raise DuplicateOrInvalidInput()
    try:
        age = int(age) if age not in (None, "") else None
    except (TypeError, ValueError):
        raise DuplicateOrInvalidInput()

    user = User(
        username=username,
        full_name=full_name,
        email=email,
        phone=(phone or "").strip() or None,
        age=age,
        password_hash=generate_password_hash(password),
        role=role,
    )
    db.session.add(user)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        logger.info("Registration rejected for %s: duplicate username or email", email)
        raise DuplicateOrInvalidInput()
    logger.info("Registered %s user %s", role, username)
    return user


def authenticate(email, password):
    """Return the session projection for valid credentials."""
    email = (email or "").strip().lower()
    user = User.query.filter_by(email=email).first()
    if user is None:
        check_password_hash(_DUMMY_HASH, password or "")
        raise InvalidCredentials()
    if not check_password_hash(user.password_hash, password or ""):
        raise InvalidCredentials()
    return user.to_session()


def current_user():
    return session.get('user')


def login_required(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not current_user():
            flash("Please log in to access this page.", "error")
            return redirect(url_for('routes.login'))
        return f(*args, **kwargs)

    return decorated_function


def role_required(role):
    """No session redirects to login; a session with another role is Forbidden."""

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            user = current_user()
            if not user:
                flash("Please log in to access this page.", "error")
                return redirect(url_for('routes.login'))
            if user['role'] != role:
                raise Forbidden(f"Only a {role} can do this.")
            return f(*args, **kwargs)

        return decorated_function

    return decorator


def is_enrolled(student_id, course_id):
    return Enrollment.query.filter_by(student_id=student_id, course_id=course_id).first() is not None


def ensure_course_member(user, course):
    """Teachers must own the course, students must be enrolled in it."""
    if user['role'] == 'Teacher':
        if course.teacher_id != user['id']:
            raise Forbidden("This course belongs to another teacher.")
    elif not is_enrolled(user['id'], course.id):
        raise Forbidden("Enroll in this course first.")


def ensure_course_owner(user, course):
    if user['role'] != 'Teacher' or course.teacher_id != user['id']:
        raise Forbidden("This course belongs to another teacher.")
