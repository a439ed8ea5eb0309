import datetime

import pytest

from coursehub import courses, db
from coursehub.models import Assignment, Course, Enrollment, Submission

from conftest import enroll, login_as, make_course, make_user


def test_teacher_creates_course(client, teacher):
    login_as(client, teacher)
    resp = client.post("/create-course", data={"title": "Algorithms", "description": "Sorting",
                                               "duration": "8 weeks"})
    assert resp.status_code == 302
    course = Course.query.one()
    assert course.teacher_id == teacher.id
    assert course.title == "Algorithms"


def test_enroll_is_idempotent(client, student, course):
    login_as(client, student)
    client.post("/enroll", data={"course_id": course.id})
    client.post("/enroll", data={"course_id": course.id})
    assert Enrollment.query.filter_by(student_id=student.id, course_id=course.id).count() == 1


def test_enroll_creates_placeholder_submissions(student, course):
    for title in ("HW1", "HW2"):
        db.session.add(Assignment(course_id=course.id, title=title, points=10))
    db.session.commit()

    assert courses.enroll(student.id, course.id) is True
    assert courses.enroll(student.id, course.id) is False

    placeholders = Submission.query.filter_by(student_id=student.id).all()
    assert len(placeholders) == 2
    assert all(p.file_path is None and p.grade is None for p in placeholders)


def test_enroll_racing_duplicate_is_a_no_op(client, student, course, monkeypatch):
    real_insert = courses.insert_ignore
    student_id, course_id = student.id, course.id

    def insert_after_other_request(model, **values):
        if model is Enrollment:
            # the same student's other request commits first
            db.session.add(Enrollment(student_id=student_id, course_id=course_id))
            db.session.commit()
        return real_insert(model, **values)

    monkeypatch.setattr(courses, "insert_ignore", insert_after_other_request)
    login_as(client, student)
    resp = client.post("/enroll", data={"course_id": course.id})

    assert resp.status_code == 302
    assert Enrollment.query.filter_by(student_id=student.id, course_id=course.id).count() == 1


def test_enroll_failure_rolls_back_enrollment(student, course, monkeypatch):
    db.session.add(Assignment(course_id=course.id, title="HW1", points=10))
    db.session.commit()
    real_insert = courses.insert_ignore

    def failing_placeholders(model, **values):
        if model is Submission:
            raise RuntimeError("placeholder insert failed")
        return real_insert(model, **values)

    monkeypatch.setattr(courses, "insert_ignore", failing_placeholders)
    with pytest.raises(RuntimeError):
        courses.enroll(student.id, course.id)

    assert Enrollment.query.count() == 0
    assert Submission.query.count() == 0


def test_enroll_unknown_course_is_not_found(client, student):
    login_as(client, student)
    resp = client.post("/enroll", data={"course_id": 999})
    assert resp.status_code == 404
    assert resp.headers["X-Error-Code"] == "NOT_FOUND"


def test_teacher_dashboard_lists_enrolled_students(client, teacher, student, course):
    enroll(student, course)
    other = make_user("tom", "Teacher")
    make_course(other, "Not mine")

    login_as(client, teacher)
    resp = client.get("/home")
    assert resp.status_code == 200
    assert b"Python 101" in resp.data
    assert b"sam@x.com" in resp.data
    assert b"Not mine" not in resp.data


def test_student_course_totals_count_missing_grades_as_zero(student, course):
    graded = Assignment(course_id=course.id, title="HW1", points=10)
    ungraded = Assignment(course_id=course.id, title="HW2", points=20)
    missing = Assignment(course_id=course.id, title="HW3", points=30)
    db.session.add_all([graded, ungraded, missing])
    db.session.commit()
    db.session.add_all([
        Submission(assignment_id=graded.id, student_id=student.id, grade=7.5),
        Submission(assignment_id=ungraded.id, student_id=student.id),
    ])
    db.session.commit()

    assert courses.course_totals(student.id, course.id) == (7.5, 60)


def test_student_dashboard(client, student, course, teacher):
    make_course(teacher, "Databases")
    enroll(student, course)
    login_as(client, student)
    resp = client.get("/home")
    assert resp.status_code == 200
    assert b"Databases" in resp.data
    assert b"Grade: 0 / 0" in resp.data


def test_course_page_requires_membership(client, student, course):
    login_as(client, student)
    assert client.get(f"/course/{course.id}").status_code == 403
    enroll(student, course)
    assert client.get(f"/course/{course.id}").status_code == 200


def test_parse_due_date():
    assert courses.parse_due_date("2026-10-20") == datetime.date(2026, 10, 20)
    assert courses.parse_due_date("") is None
