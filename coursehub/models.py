import re
from datetime import datetime, timezone

from coursehub import db


def utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


def normalize_title(title):
    """Key used to match chapters/topics: trimmed, single-spaced, case-folded."""
    return re.sub(r"\s+", " ", (title or "").strip()).casefold()


def insert_ignore(model, **values):
    """INSERT ... ON CONFLICT DO NOTHING on the current session.

    Returns True when the row was written, False when a conflicting row
    already existed.
    """
    dialect = db.engine.dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise NotImplementedError(f"insert_ignore does not support {dialect}")
    result = db.session.execute(insert(model).values(**values).on_conflict_do_nothing())
    return result.rowcount == 1


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False)
    full_name = db.Column(db.String(150), nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False)
    phone = db.Column(db.String(30))
    age = db.Column(db.Integer)
    password_hash = db.Column(db.String(256), nullable=False)
    role = db.Column(db.String(10), nullable=False)  # "Teacher" | "Student"

    def to_session(self):
        return {
            "id": self.id,
            "username": self.username,
            "full_name": self.full_name,
            "email": self.email,
            "role": self.role,
        }


class Course(db.Model):
    __tablename__ = "courses"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    duration = db.Column(db.String(50))
    teacher_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)

    teacher = db.relationship("User")


class Enrollment(db.Model):
    __tablename__ = "enrollments"
    __table_args__ = (db.UniqueConstraint("student_id", "course_id"),)

    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    course_id = db.Column(db.Integer, db.ForeignKey("courses.id"), nullable=False)
    enrolled_at = db.Column(db.DateTime, default=utcnow)


class Assignment(db.Model):
    __tablename__ = "assignments"

    id = db.Column(db.Integer, primary_key=True)
    course_id = db.Column(db.Integer, db.ForeignKey("courses.id"), nullable=False)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    due_date = db.Column(db.Date)
    file_path = db.Column(db.String(255))
    points = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)

    submissions = db.relationship("Submission", backref="assignment", lazy=True,
                                  cascade="all, delete-orphan")


class Submission(db.Model):
    __tablename__ = "submissions"
    __table_args__ = (db.UniqueConstraint("assignment_id", "student_id"),)

    id = db.Column(db.Integer, primary_key=True)
    assignment_id = db.Column(db.Integer, db.ForeignKey("assignments.id"), nullable=False)
    student_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    file_path = db.Column(db.String(255))
    submitted_at = db.Column(db.DateTime)
    grade = db.Column(db.Float)
    feedback = db.Column(db.Text)

    student = db.relationship("User")


class CourseMaterial(db.Model):
    __tablename__ = "course_materials"

    id = db.Column(db.Integer, primary_key=True)
    course_id = db.Column(db.Integer, db.ForeignKey("courses.id"), nullable=False)
    file_name = db.Column(db.String(200), nullable=False)
    file_path = db.Column(db.String(255), nullable=False)
    uploaded_at = db.Column(db.DateTime, default=utcnow)


class Chapter(db.Model):
    __tablename__ = "chapters"
    __table_args__ = (db.UniqueConstraint("course_id", "title_key"),)

    id = db.Column(db.Integer, primary_key=True)
    course_id = db.Column(db.Integer, db.ForeignKey("courses.id"), nullable=False)
    title = db.Column(db.String(200), nullable=False)
    title_key = db.Column(db.String(200), nullable=False)

    topics = db.relationship("Topic", backref="chapter", lazy=True, order_by="Topic.id")


class Topic(db.Model):
    __tablename__ = "topics"
    __table_args__ = (db.UniqueConstraint("chapter_id", "title_key"),)

    id = db.Column(db.Integer, primary_key=True)
    chapter_id = db.Column(db.Integer, db.ForeignKey("chapters.id"), nullable=False)
    title = db.Column(db.String(200), nullable=False)
    title_key = db.Column(db.String(200), nullable=False)

    videos = db.relationship("Video", backref="topic", lazy=True, order_by="Video.id")


class Video(db.Model):
    __tablename__ = "videos"

    id = db.Column(db.Integer, primary_key=True)
    topic_id = db.Column(db.Integer, db.ForeignKey("topics.id"), nullable=False)
    title = db.Column(db.String(200), nullable=False)
    file_path = db.Column(db.String(255), nullable=False)
    uploaded_at = db.Column(db.DateTime, default=utcnow)


class ForumPost(db.Model):
    __tablename__ = "course_forum"

    id = db.Column(db.Integer, primary_key=True)
    course_id = db.Column(db.Integer, db.ForeignKey("courses.id"), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    content = db.Column(db.Text, nullable=False)
    parent_id = db.Column(db.Integer, db.ForeignKey("course_forum.id"), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    author = db.relationship("User")


class Quiz(db.Model):
    __tablename__ = "quizzes"

    id = db.Column(db.Integer, primary_key=True)
    course_id = db.Column(db.Integer, db.ForeignKey("courses.id"), nullable=False)
    title = db.Column(db.String(200), nullable=False)
    total_points = db.Column(db.Float, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)

    questions = db.relationship("QuizQuestion", backref="quiz", lazy=True,
                                order_by="QuizQuestion.id", cascade="all, delete-orphan")


class QuizQuestion(db.Model):
    __tablename__ = "quiz_questions"

    id = db.Column(db.Integer, primary_key=True)
    quiz_id = db.Column(db.Integer, db.ForeignKey("quizzes.id"), nullable=False)
    question_text = db.Column(db.Text, nullable=False)
    option_a = db.Column(db.String(255), nullable=False)
    option_b = db.Column(db.String(255), nullable=False)
    option_c = db.Column(db.String(255), nullable=False)
    option_d = db.Column(db.String(255), nullable=False)
    correct_option = db.Column(db.String(1), nullable=False)

    def options(self):
        return {"A": self.option_a, "B": self.option_b, "C": self.option_c, "D": self.option_d}


class QuizSubmission(db.Model):
    __tablename__ = "quiz_submissions"
    __table_args__ = (db.UniqueConstraint("quiz_id", "student_id"),)

    id = db.Column(db.Integer, primary_key=True)
    quiz_id = db.Column(db.Integer, db.ForeignKey("quizzes.id"), nullable=False)
    student_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    started_at = db.Column(db.DateTime)
    submitted_at = db.Column(db.DateTime)
    score = db.Column(db.Float)
    time_taken = db.Column(db.Integer)


class StudentTotalScore(db.Model):
    __tablename__ = "student_total_score"

    student_id = db.Column(db.Integer, db.ForeignKey("users.id"), primary_key=True)
    total_score = db.Column(db.Float, nullable=False, default=0.0)
    exp_total = db.Column(db.Integer, nullable=False, default=0)

    student = db.relationship("User")
