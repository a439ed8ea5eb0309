import io

from coursehub import courses, db
from coursehub.models import Chapter, CourseMaterial, Topic, Video
from coursehub.storage import content_type_for, disposition_for

from conftest import enroll, login_as


def test_upload_material(client, teacher, course, sent_emails):
    login_as(client, teacher)
    resp = client.post(f"/course/{course.id}/materials/upload", data={
        "material_title": "Slides", "material_file": (io.BytesIO(b"pdf"), "slides.pdf"),
    }, content_type="multipart/form-data")
    assert resp.status_code == 302
    material = CourseMaterial.query.one()
    assert material.file_name == "Slides"
    assert material.file_path.endswith(".pdf")


def test_upload_material_requires_title_and_file(client, teacher, course):
    login_as(client, teacher)
    resp = client.post(f"/course/{course.id}/materials/upload", data={"material_title": "Slides"})
    assert resp.status_code == 400
    assert CourseMaterial.query.count() == 0


def test_video_upload_merges_chapter_and_topic_by_normalized_title(course):
    courses.upload_video(course, "Chapter 1", "Loops", "For loops", "1.mp4")
    courses.upload_video(course, "  chapter   1 ", "LOOPS", "While loops", "2.mp4")
    courses.upload_video(course, "Chapter 1", "Functions", "Def", "3.mp4")

    assert Chapter.query.count() == 1
    assert Topic.query.count() == 2
    assert Video.query.count() == 3
    chapter = Chapter.query.one()
    assert chapter.title == "Chapter 1"
    loops = Topic.query.filter_by(title_key="loops").one()
    assert [v.title for v in loops.videos] == ["For loops", "While loops"]


def test_video_upload_route_and_course_page(client, teacher, student, course):
    login_as(client, teacher)
    resp = client.post(f"/course/{course.id}/videos/upload", data={
        "chapter_title": "Basics", "topic_title": "Setup", "video_title": "Welcome",
        "video_file": (io.BytesIO(b"vid"), "welcome.mp4"),
    }, content_type="multipart/form-data")
    assert resp.status_code == 302

    enroll(student, course)
    login_as(client, student)
    page = client.get(f"/course/{course.id}")
    assert b"Basics" in page.data and b"Setup" in page.data and b"Welcome" in page.data


def test_mime_mapping_and_disposition():
    assert content_type_for("a.PDF") == "application/pdf"
    assert content_type_for("clip.mp4") == "video/mp4"
    assert content_type_for("weird.bin") == "application/octet-stream"
    assert disposition_for("application/pdf") == "inline"
    assert disposition_for("image/png") == "inline"
    assert disposition_for("application/zip") == "attachment"


def test_file_endpoint_sets_disposition(client, app, student):
    folder = app.config["UPLOAD_FOLDER"]
    with open(f"{folder}/1.pdf", "wb") as f:
        f.write(b"%PDF")
    with open(f"{folder}/2.zip", "wb") as f:
        f.write(b"PK")

    login_as(client, student)
    pdf = client.get("/files/1.pdf")
    assert pdf.status_code == 200
    assert pdf.mimetype == "application/pdf"
    assert pdf.headers["Content-Disposition"].startswith("inline")

    archive = client.get("/files/2.zip")
    assert archive.headers["Content-Disposition"].startswith("attachment")

    assert client.get("/files/missing.pdf").status_code == 404
