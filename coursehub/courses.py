"""Courses, enrollment, assignments, grading, materials and the video hierarchy."""
import logging
from datetime import date

from coursehub import db
from coursehub.errors import NotFound, OutOfRangeError, ValidationError
from coursehub.models import (Assignment, Chapter, Course, CourseMaterial, Enrollment, Submission,
                              Topic, User, Video, insert_ignore, normalize_title, utcnow)
from coursehub.notifications import notify_course

logger = logging.getLogger(__name__)

MAX_ASSIGNMENT_POINTS = 100


def get_course(course_id):
    course = db.session.get(Course, course_id) if course_id is not None else None
    if course is None:
        raise NotFound("Course not found")
    return course


def get_assignment(assignment_id):
    assignment = db.session.get(Assignment, assignment_id)
    if assignment is None:
        raise NotFound("Assignment not found")
    return assignment


def create_course(teacher_id, title, description, duration):
    title = (title or "").strip()
    if not title:
        raise ValidationError("Course title is required")
    course = Course(title=title, description=description, duration=duration, teacher_id=teacher_id)
    db.session.add(course)
    db.session.commit()
    return course


def enroll(student_id, course_id):
    """Enroll once and pre-create an empty submission per existing assignment.

    Returns False when the student was already enrolled.
    """
    get_course(course_id)
    try:
        # A concurrent enroll for the same pair turns into a no-op here
        if not insert_ignore(Enrollment, student_id=student_id, course_id=course_id):
            return False
        assignment_ids = [row.id for row in
                          db.session.query(Assignment.id).filter_by(course_id=course_id)]
        for assignment_id in assignment_ids:
            insert_ignore(Submission, assignment_id=assignment_id, student_id=student_id)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return True


def teacher_dashboard(teacher_id):
    courses = Course.query.filter_by(teacher_id=teacher_id).order_by(Course.created_at.desc()).all()
    result = []
    for course in courses:
        students = (User.query.join(Enrollment, Enrollment.student_id == User.id)
                    .filter(Enrollment.course_id == course.id)
                    .order_by(User.full_name).all())
        result.append({"course": course, "students": students})
    return result


def course_totals(student_id, course_id):
    """(sum of grades, sum of max points); ungraded work counts 0 of its full points."""
    rows = (db.session.query(Assignment.points, Submission.grade)
            .outerjoin(Submission, (Submission.assignment_id == Assignment.id)
                       & (Submission.student_id == student_id))
            .filter(Assignment.course_id == course_id)
            .all())
    total_grade = sum(grade for _, grade in rows if grade is not None)
    total_max = sum(points for points, _ in rows)
    return total_grade, total_max


def student_dashboard(student_id):
    courses = Course.query.order_by(Course.created_at.desc()).all()
    enrolled = (Course.query.join(Enrollment, Enrollment.course_id == Course.id)
                .filter(Enrollment.student_id == student_id)
                .order_by(Course.created_at.desc()).all())
    enrolled_courses = []
    for course in enrolled:
        total_grade, total_max = course_totals(student_id, course.id)
        enrolled_courses.append({"course": course, "total_grade": total_grade,
                                 "total_max_points": total_max})
    return {
        "courses": courses,
        "enrolled_courses": enrolled_courses,
        "enrolled_course_ids": {c.id for c in enrolled},
    }


def parse_points(points):
    try:
        marks = int(str(points).strip())
    except (TypeError, ValueError):
        raise OutOfRangeError(f"Points must be 0-{MAX_ASSIGNMENT_POINTS}")
    if marks < 0 or marks > MAX_ASSIGNMENT_POINTS:
        raise OutOfRangeError(f"Points must be 0-{MAX_ASSIGNMENT_POINTS}")
    return marks


def parse_due_date(value):
    if value in (None, ""):
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError:
        raise ValidationError("Due date must be YYYY-MM-DD")


def clean_assignment_fields(title, due_date, points):
    """Return (title, due date, points) or raise on the first invalid field."""
    marks = parse_points(points)
    due = parse_due_date(due_date)
    title = (title or "").strip()
    if not title:
        raise ValidationError("Assignment title is required")
    return title, due, marks


def create_assignment(course, title, description, due_date, points, file_path=None):
    title, due, marks = clean_assignment_fields(title, due_date, points)

    assignment = Assignment(course_id=course.id, title=title, description=description,
                            due_date=due, points=marks, file_path=file_path)
    db.session.add(assignment)
    db.session.commit()

    due_text = due.isoformat() if due else "no due date"
    notify_course(course.id, f"New assignment in {course.title}: {title}",
                  f"A new assignment '{title}' worth {marks} points was posted ({due_text}).")
    return assignment


def list_assignments(course_id, student_id=None):
    """Assignments newest first, each with all submissions or only the student's own."""
    assignments = (Assignment.query.filter_by(course_id=course_id)
                   .order_by(Assignment.created_at.desc(), Assignment.id.desc()).all())
    result = []
    for a in assignments:
        query = Submission.query.filter_by(assignment_id=a.id)
        if student_id is not None:
            query = query.filter_by(student_id=student_id)
        result.append({"assignment": a, "submissions": query.order_by(Submission.id).all()})
    return result


def submit_assignment(assignment, student_id, file_path=None):
    """Upsert the student's submission; late work is accepted."""
    submission = Submission.query.filter_by(assignment_id=assignment.id, student_id=student_id).first()
    if submission is None:
        submission = Submission(assignment_id=assignment.id, student_id=student_id)
        db.session.add(submission)
    submission.file_path = file_path
    submission.submitted_at = utcnow()
    db.session.commit()
    return submission


def grade_submission(assignment, submission_id, grade, feedback):
    submission = db.session.get(Submission, submission_id)
    if submission is None or submission.assignment_id != assignment.id:
        raise NotFound("Submission not found")
    message = f"Grade must be between 0 and {assignment.points}"
    try:
        value = float(grade)
    except (TypeError, ValueError):
        raise OutOfRangeError(message)
    if not 0 <= value <= assignment.points:
        raise OutOfRangeError(message)

    submission.grade = value
    submission.feedback = feedback
    db.session.commit()
    return submission


def upload_material(course, title, file_path):
    title = (title or "").strip()
    if not title or not file_path:
        raise ValidationError("Title and file required")
    material = CourseMaterial(course_id=course.id, file_name=title, file_path=file_path)
    db.session.add(material)
    db.session.commit()
    notify_course(course.id, f"New material in {course.title}",
                  f"'{title}' was uploaded to {course.title}.")
    return material


def _find_or_create(model, parent_field, parent_id, title):
    key = normalize_title(title)
    node = model.query.filter_by(**{parent_field: parent_id, "title_key": key}).first()
    if node is None:
        node = model(**{parent_field: parent_id, "title": " ".join(title.split()), "title_key": key})
        db.session.add(node)
        db.session.flush()
    return node


def upload_video(course, chapter_title, topic_title, video_title, file_path):
    """Resolve chapter and topic by normalized title, creating them as needed."""
    if not all(t and t.strip() for t in (chapter_title, topic_title, video_title)) or not file_path:
        raise ValidationError("Chapter, topic, video title and file are required")
    try:
        chapter = _find_or_create(Chapter, "course_id", course.id, chapter_title)
        topic = _find_or_create(Topic, "chapter_id", chapter.id, topic_title)
        video = Video(topic_id=topic.id, title=video_title.strip(), file_path=file_path)
        db.session.add(video)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return video


def course_content(course_id):
    materials = (CourseMaterial.query.filter_by(course_id=course_id)
                 .order_by(CourseMaterial.uploaded_at.desc()).all())
    chapters = Chapter.query.filter_by(course_id=course_id).order_by(Chapter.id).all()
    return {"materials": materials, "chapters": chapters}
