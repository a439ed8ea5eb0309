from coursehub import create_app, db


def init_database():
    app = create_app({"ENABLE_SCHEDULER": False})
    with app.app_context():
        db.create_all()
        print("Database tables created successfully.")


if __name__ == "__main__":
    init_database()
