import os
import logging
from flask import Flask, request, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from sqlalchemy.exc import SQLAlchemyError

# Initialize extensions
db = SQLAlchemy()
migrate = Migrate()

logger = logging.getLogger(__name__)


def _env_flag(name, default):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def create_app(test_config=None):
    app = Flask(__name__)

    # 1. Secret Key (Security)
    app.secret_key = os.environ.get('SECRET_KEY', 'dev_secret_key_fallback')
    app.config['SESSION_COOKIE_HTTPONLY'] = True

    # 2. Database Configuration
    # Prioritize 'DATABASE_URL' from environment (Docker/Render)
    # Fallback to local SQLite if no URL is found
    database_url = os.environ.get('DATABASE_URL')

    if database_url:
        # SQLAlchemy requires 'postgresql://' instead of 'postgres://' (common in Render)
        if database_url.startswith("postgres://"):
            database_url = database_url.replace("postgres://", "postgresql://", 1)
        app.config['SQLALCHEMY_DATABASE_URI'] = database_url
    else:
        # Local Development Fallback
        app.config['SQLALCHEMY_DATABASE_URI'] = 'sqlite:///coursehub.db'

    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False

    # 3. Uploads, mail, AI and scheduler settings
    app.config['UPLOAD_FOLDER'] = os.environ.get('UPLOAD_FOLDER', os.path.join(os.getcwd(), 'uploads'))
    app.config['SMTP_SERVER'] = os.environ.get('SMTP_SERVER', 'smtp.gmail.com')
    app.config['SMTP_PORT'] = int(os.environ.get('SMTP_PORT', 465))
    app.config['SENDER_EMAIL'] = os.environ.get('SENDER_EMAIL')
    app.config['SENDER_PASSWORD'] = os.environ.get('SENDER_PASSWORD')
    app.config['GROQ_API_KEY'] = os.environ.get('GROQ_API_KEY')
    app.config['GROQ_MODEL'] = os.environ.get('GROQ_MODEL', 'llama-3.3-70b-versatile')
    app.config['REMINDER_HOUR'] = int(os.environ.get('REMINDER_HOUR', 9))
    app.config['REMINDER_MINUTE'] = int(os.environ.get('REMINDER_MINUTE', 0))
    app.config['ENABLE_SCHEDULER'] = _env_flag('ENABLE_SCHEDULER', True)
    app.config['NOTIFY_WORKERS'] = int(os.environ.get('NOTIFY_WORKERS', 8))
    app.config['LEADERBOARD_LIMIT'] = int(os.environ.get('LEADERBOARD_LIMIT', 20))

    if test_config:
        app.config.update(test_config)

    if not app.testing:
        logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    os.makedirs(app.config['UPLOAD_FOLDER'], exist_ok=True)

    # 4. Initialize Plugins
    db.init_app(app)
    migrate.init_app(app, db)

    # 5. Register Blueprints (Routes)
    from coursehub.routes import routes
    app.register_blueprint(routes)
    _register_error_handlers(app)

    # 6. Create Database Tables (if they don't exist)
    with app.app_context():
        from coursehub import models  # noqa: F401
        db.create_all()

    # 7. Daily due-date reminders
    if app.config['ENABLE_SCHEDULER'] and not app.testing:
        from coursehub.notifications import start_reminder_scheduler
        start_reminder_scheduler(app)

    return app


def _wants_json():
    return request.is_json or request.path.startswith('/ask-ai')


def _register_error_handlers(app):
    from coursehub.errors import CourseHubError, DatabaseError

    @app.errorhandler(CourseHubError)
    def handle_app_error(err):
        if _wants_json():
            return jsonify({"error": err.message, "code": err.code}), err.status
        return err.message, err.status, {"Content-Type": "text/plain; charset=utf-8",
                                         "X-Error-Code": err.code}

    @app.errorhandler(SQLAlchemyError)
    def handle_db_error(err):
        db.session.rollback()
        logger.exception("Database error on %s %s", request.method, request.path)
        return handle_app_error(DatabaseError())
