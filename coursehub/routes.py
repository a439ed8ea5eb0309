import os
import logging
from flask import (Blueprint, render_template, request, redirect, session, flash, url_for, jsonify,
                   send_from_directory, current_app, abort)

from coursehub import courses, forum, gamification
from coursehub.ai_tutor import ask_tutor
from coursehub.auth import (register_user, authenticate, current_user, login_required, role_required,
                            ensure_course_member, ensure_course_owner, is_enrolled)
from coursehub.errors import DuplicateOrInvalidInput, InvalidCredentials, Forbidden
from coursehub.storage import save_upload, content_type_for, disposition_for

logger = logging.getLogger(__name__)

routes = Blueprint('routes', __name__)


# --- AUTH ROUTES ---
@routes.route('/')
def index():
    return render_template('index.html', user=current_user())


@routes.route('/register', methods=['GET', 'POST'])
def register():
    if request.method == 'POST':
        form = request.form
        try:
            register_user(form.get('username'), form.get('full_name'), form.get('email'),
                          form.get('phone'), form.get('age'), form.get('password'), form.get('role'))
        except DuplicateOrInvalidInput as e:
            return render_template('register.html', message=e.message), e.status
        flash("Registered! Log in now.", "success")
        return redirect(url_for('routes.login'))
    return render_template('register.html', message='')


@routes.route('/login', methods=['GET', 'POST'])
def login():
    if request.method == 'POST':
        try:
            user = authenticate(request.form.get('email'), request.form.get('password'))
        except InvalidCredentials as e:
            logger.info("Failed login for %s", request.form.get('email'))
            return render_template('login.html', message=e.message), e.status
        session.clear()
        session['user'] = user
        logger.info("User %s logged in", user['username'])
        return redirect(url_for('routes.home'))
    return render_template('login.html', message='')


@routes.route('/logout')
def logout():
    session.clear()
    return redirect(url_for('routes.login'))


# --- DASHBOARD ---
@routes.route('/home')
@login_required
def home():
    user = current_user()
    if user['role'] == 'Teacher':
        return render_template('home_teacher.html', user=user,
                               courses_with_students=courses.teacher_dashboard(user['id']))
    return render_template('home_student.html', user=user, **courses.student_dashboard(user['id']))


# --- COURSES ---
@routes.route('/create-course', methods=['POST'])
@role_required('Teacher')
def create_course():
    user = current_user()
    courses.create_course(user['id'], request.form.get('title'), request.form.get('description'),
                          request.form.get('duration'))
    return redirect(url_for('routes.home'))


@routes.route('/enroll', methods=['POST'])
@role_required('Student')
def enroll():
    course_id = request.form.get('course_id', type=int)
    courses.enroll(current_user()['id'], course_id)
    return redirect(url_for('routes.home'))


@routes.route('/course/<int:course_id>')
@login_required
def course_page(course_id):
    user = current_user()
    course = courses.get_course(course_id)
    ensure_course_member(user, course)
    return render_template('course.html', user=user, course=course, **courses.course_content(course_id))


# --- ASSIGNMENTS ---
@routes.route('/course/<int:course_id>/assignments')
@login_required
def assignments(course_id):
    user = current_user()
    course = courses.get_course(course_id)
    ensure_course_member(user, course)
    student_id = user['id'] if user['role'] == 'Student' else None
    return render_template('assignment_page.html', user=user, course=course, role=user['role'],
                           assignments=courses.list_assignments(course_id, student_id))


@routes.route('/course/<int:course_id>/assignments/create', methods=['POST'])
@role_required('Teacher')
def create_assignment(course_id):
    course = courses.get_course(course_id)
    ensure_course_owner(current_user(), course)
    form = request.form
    # Validate before touching the disk so a rejected request writes nothing
    courses.clean_assignment_fields(form.get('title'), form.get('due_date'), form.get('points'))
    file_path = save_upload(request.files.get('file'))
    courses.create_assignment(course, form.get('title'), form.get('description'), form.get('due_date'),
                              form.get('points'), file_path)
    return redirect(url_for('routes.assignments', course_id=course_id))


@routes.route('/assignment/<int:assignment_id>/submit', methods=['POST'])
@role_required('Student')
def submit_assignment(assignment_id):
    user = current_user()
    assignment = courses.get_assignment(assignment_id)
    if not is_enrolled(user['id'], assignment.course_id):
        raise Forbidden("Enroll in this course first.")
    courses.submit_assignment(assignment, user['id'], save_upload(request.files.get('file')))
    flash("Submitted!", "success")
    return redirect(url_for('routes.assignments', course_id=assignment.course_id))


@routes.route('/assignment/<int:assignment_id>/submissions/<int:submission_id>/grade', methods=['POST'])
@role_required('Teacher')
def grade_submission(assignment_id, submission_id):
    assignment = courses.get_assignment(assignment_id)
    ensure_course_owner(current_user(), courses.get_course(assignment.course_id))
    courses.grade_submission(assignment, submission_id, request.form.get('grade'),
                             request.form.get('feedback'))
    return redirect(url_for('routes.assignments', course_id=assignment.course_id))


# --- MATERIALS & VIDEOS ---
@routes.route('/course/<int:course_id>/materials/upload', methods=['POST'])
@role_required('Teacher')
def upload_material(course_id):
    course = courses.get_course(course_id)
    ensure_course_owner(current_user(), course)
    title = request.form.get('material_title')
    file = request.files.get('material_file')
    if not (title and title.strip()) or file is None or not file.filename:
        return 'Title and file required', 400
    courses.upload_material(course, title, save_upload(file))
    return redirect(url_for('routes.course_page', course_id=course_id))


@routes.route('/course/<int:course_id>/videos/upload', methods=['POST'])
@role_required('Teacher')
def upload_video(course_id):
    course = courses.get_course(course_id)
    ensure_course_owner(current_user(), course)
    form = request.form
    file = request.files.get('video_file')
    if file is None or not file.filename:
        return 'Video file required', 400
    courses.upload_video(course, form.get('chapter_title'), form.get('topic_title'),
                         form.get('video_title'), save_upload(file))
    return redirect(url_for('routes.course_page', course_id=course_id))


# --- FORUM ---
@routes.route('/course/<int:course_id>/forum', methods=['GET', 'POST'])
@login_required
def course_forum(course_id):
    user = current_user()
    course = courses.get_course(course_id)
    ensure_course_member(user, course)
    if request.method == 'POST':
        forum.post_or_reply(course, user, request.form.get('content', ''), request.form.get('parent_id'))
        return redirect(url_for('routes.course_forum', course_id=course_id))
    return render_template('course_forum.html', user=user, course=course,
                           posts=forum.list_thread(course_id))


# --- QUIZZES ---
@routes.route('/course/<int:course_id>/quizzes')
@login_required
def quizzes(course_id):
    user = current_user()
    course = courses.get_course(course_id)
    ensure_course_member(user, course)
    student_id = user['id'] if user['role'] == 'Student' else None
    return render_template('quizzes.html', user=user, course=course,
                           quizzes=gamification.list_quizzes(course_id, student_id))


def _questions_from_form(form):
    fields = ('question_text', 'option_a', 'option_b', 'option_c', 'option_d', 'correct_option')
    columns = {f: form.getlist(f'{f}[]') or form.getlist(f) for f in fields}
    count = max(len(values) for values in columns.values())
    return [{f: (columns[f][i] if i < len(columns[f]) else '') for f in fields} for i in range(count)]


@routes.route('/course/<int:course_id>/quizzes/create', methods=['POST'])
@role_required('Teacher')
def create_quiz(course_id):
    course = courses.get_course(course_id)
    ensure_course_owner(current_user(), course)
    if request.is_json:
        data = request.get_json()
        questions = data.get('questions') or []
    else:
        data = request.form
        questions = _questions_from_form(request.form)
    gamification.create_quiz(course.id, data.get('title'), data.get('total_points'), questions)
    return redirect(url_for('routes.quizzes', course_id=course_id))


def _quiz_for_student(quiz_id):
    user = current_user()
    quiz = gamification.get_quiz(quiz_id)
    if not is_enrolled(user['id'], quiz.course_id):
        raise Forbidden("Enroll in this course first.")
    return user, quiz


@routes.route('/quiz/<int:quiz_id>/start')
@role_required('Student')
def start_quiz(quiz_id):
    user, quiz = _quiz_for_student(quiz_id)
    gamification.start_attempt(quiz, user['id'])
    return render_template('quiz.html', user=user, quiz=quiz, questions=quiz.questions)


@routes.route('/quiz/<int:quiz_id>/submit', methods=['POST'])
@role_required('Student')
def submit_quiz(quiz_id):
    user, quiz = _quiz_for_student(quiz_id)
    answers = {}
    for key, value in request.form.items():
        if key.startswith('answer_') and key[len('answer_'):].isdigit():
            answers[int(key[len('answer_'):])] = value
    result = gamification.submit_attempt(quiz.id, user['id'], answers)
    return render_template('quiz_result.html', user=user, **result)


@routes.route('/leaderboard')
@login_required
def leaderboard():
    rows = gamification.leaderboard(current_app.config['LEADERBOARD_LIMIT'])
    return render_template('leaderboard.html', user=current_user(), leaderboard=rows)


# --- AI TUTOR ---
@routes.route('/ask-ai', methods=['GET', 'POST'])
@login_required
def ask_ai():
    if request.method == 'GET':
        return render_template('ask_ai.html', user=current_user())
    data = request.get_json(silent=True) or request.form
    return jsonify({"answer": ask_tutor(data.get('question'))})


# --- FILES ---
@routes.route('/uploads/<path:filename>')
@login_required
def uploads(filename):
    return send_from_directory(current_app.config['UPLOAD_FOLDER'], filename)


@routes.route('/files/<path:filename>')
@login_required
def view_file(filename):
    folder = current_app.config['UPLOAD_FOLDER']
    if not os.path.isfile(os.path.join(folder, os.path.basename(filename))):
        abort(404)
    mime_type = content_type_for(filename)
    return send_from_directory(folder, os.path.basename(filename), mimetype=mime_type,
                               as_attachment=disposition_for(mime_type) == 'attachment')
