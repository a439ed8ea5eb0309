"""Quizzes, attempt scoring, experience points and the leaderboard.

Attempt lifecycle per (quiz, student), kept in the unique QuizSubmission row:

    not started --start_attempt--> in progress --submit_attempt--> completed
    completed   --start_attempt--> in progress   (retake clears the result)

total_score is recomputed from all quiz scores on every submit, while
exp_total only ever grows: a retake replaces its score but adds experience.
"""
import logging
import math

from sqlalchemy import func, select, update

from coursehub import db
from coursehub.errors import NotFound, ValidationError
from coursehub.models import (Quiz, QuizQuestion, QuizSubmission, StudentTotalScore, User, insert_ignore,
                              utcnow)

logger = logging.getLogger(__name__)

OPTION_KEYS = ("A", "B", "C", "D")
SPEED_BONUS_MAX = 60


def round_half_up(value):
    return int(math.floor(value + 0.5))


def exp_for(score, time_taken):
    """Experience for one attempt: twice the score plus a speed bonus that fades over 10 minutes."""
    return round_half_up(score * 2 + max(0, SPEED_BONUS_MAX - time_taken / 10))


def _clean_question(raw):
    text = (raw.get("question_text") or "").strip()
    options = [(raw.get(f"option_{k.lower()}") or "").strip() for k in OPTION_KEYS]
    correct = (raw.get("correct_option") or "").strip().upper()
    if not text or not all(options) or correct not in OPTION_KEYS:
        return None
    return QuizQuestion(question_text=text, option_a=options[0], option_b=options[1],
                        option_c=options[2], option_d=options[3], correct_option=correct)


def create_quiz(course_id, title, total_points, questions):
    title = (title or "").strip()
    if not title:
        raise ValidationError("Quiz title is required")
    try:
        total_points = float(total_points)
    except (TypeError, ValueError):
        raise ValidationError("Total points must be a number")
    if not math.isfinite(total_points) or total_points <= 0:
        raise ValidationError("Total points must be greater than 0")

    cleaned = [q for q in (_clean_question(raw) for raw in questions) if q is not None]
    skipped = len(questions) - len(cleaned)
    if skipped:
        logger.info("Quiz '%s': skipped %d malformed question(s)", title, skipped)
    if not cleaned:
        raise ValidationError("A quiz needs at least one question with four options and a correct answer")

    quiz = Quiz(course_id=course_id, title=title, total_points=total_points)
    try:
        db.session.add(quiz)
        db.session.flush()
        for question in cleaned:
            question.quiz_id = quiz.id
            db.session.add(question)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return quiz


def list_quizzes(course_id, student_id=None):
    quizzes = Quiz.query.filter_by(course_id=course_id).order_by(Quiz.created_at.desc()).all()
    attempts = {}
    if student_id is not None and quizzes:
        rows = QuizSubmission.query.filter(QuizSubmission.student_id == student_id,
                                           QuizSubmission.quiz_id.in_([q.id for q in quizzes])).all()
        attempts = {row.quiz_id: row for row in rows}
    return [{"quiz": q, "attempt": attempts.get(q.id)} for q in quizzes]


def get_quiz(quiz_id):
    quiz = db.session.get(Quiz, quiz_id)
    if quiz is None:
        raise NotFound("Quiz not found")
    return quiz


def start_attempt(quiz, student_id, now=None):
    attempt = QuizSubmission.query.filter_by(quiz_id=quiz.id, student_id=student_id).first()
    if attempt is None:
        attempt = QuizSubmission(quiz_id=quiz.id, student_id=student_id)
        db.session.add(attempt)
    attempt.started_at = now or utcnow()
    attempt.submitted_at = None
    attempt.score = None
    attempt.time_taken = None
    db.session.commit()
    return attempt


def score_answers(quiz, questions, answers):
    """Return (score, breakdown). Every question is worth total_points / len(questions)."""
    per_question = quiz.total_points / len(questions) if questions else 0.0
    breakdown = []
    correct_count = 0
    for question in questions:
        selected = answers.get(question.id)
        if selected is None:
            selected = answers.get(str(question.id))
        is_correct = selected == question.correct_option
        if is_correct:
            correct_count += 1
        breakdown.append({
            "question_id": question.id,
            "question_text": question.question_text,
            "options": question.options(),
            "selected": selected,
            "correct": question.correct_option,
            "is_correct": is_correct,
        })
    # never above total_points, even after float rounding
    return min(quiz.total_points, correct_count * per_question), breakdown


def submit_attempt(quiz_id, student_id, answers, now=None):
    quiz = get_quiz(quiz_id)
    questions = list(quiz.questions)
    now = now or utcnow()

    score, breakdown = score_answers(quiz, questions, answers)

    try:
        attempt = QuizSubmission.query.filter_by(quiz_id=quiz.id, student_id=student_id).first()
        if attempt is None:
            attempt = QuizSubmission(quiz_id=quiz.id, student_id=student_id)
            db.session.add(attempt)

        if attempt.started_at is not None:
            time_taken = max(0, int((now - attempt.started_at).total_seconds()))
        else:
            time_taken = 0
        exp_gained = exp_for(score, time_taken)

        attempt.score = score
        attempt.submitted_at = now
        attempt.time_taken = time_taken
        db.session.flush()

        total = (select(func.coalesce(func.sum(QuizSubmission.score), 0.0))
                 .where(QuizSubmission.student_id == student_id)
                 .scalar_subquery())
        insert_ignore(StudentTotalScore, student_id=student_id, total_score=0.0, exp_total=0)
        # atomic increment; exp_total is never read back and rewritten
        db.session.execute(update(StudentTotalScore)
                           .where(StudentTotalScore.student_id == student_id)
                           .values(total_score=total,
                                   exp_total=StudentTotalScore.exp_total + exp_gained),
                           execution_options={"synchronize_session": False})
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    return {
        "quiz": quiz,
        "results": breakdown,
        "score": score,
        "total_points": quiz.total_points,
        "time_taken": time_taken,
        "exp_gained": exp_gained,
    }


def accuracy(score_sum, max_sum):
    if not max_sum:
        return 0.0
    return round(min(100.0, max(0.0, score_sum / max_sum * 100)), 2)


def leaderboard(limit=20):
    stats = (db.session.query(QuizSubmission.student_id.label("student_id"),
                              func.count(QuizSubmission.id).label("quizzes_solved"),
                              func.sum(QuizSubmission.score).label("score_sum"),
                              func.sum(Quiz.total_points).label("max_sum"))
             .join(Quiz, Quiz.id == QuizSubmission.quiz_id)
             .filter(QuizSubmission.score.isnot(None))
             .group_by(QuizSubmission.student_id)
             .subquery())

    rows = (db.session.query(User.id, User.full_name, User.username, StudentTotalScore.total_score,
                             StudentTotalScore.exp_total, stats.c.quizzes_solved, stats.c.score_sum,
                             stats.c.max_sum)
            .join(StudentTotalScore, StudentTotalScore.student_id == User.id)
            .outerjoin(stats, stats.c.student_id == User.id)
            .order_by(StudentTotalScore.exp_total.desc(), User.id.asc())
            .limit(limit)
            .all())

    return [{
        "rank": position,
        "student_id": row.id,
        "full_name": row.full_name,
        "username": row.username,
        "total_score": row.total_score or 0.0,
        "exp_total": row.exp_total or 0,
        "quizzes_solved": row.quizzes_solved or 0,
        "accuracy": accuracy(row.score_sum or 0.0, row.max_sum or 0.0),
    } for position, row in enumerate(rows, start=1)]
