import logging

from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_login import LoginManager
from pydantic import ValidationError as RequestValidationError

db = SQLAlchemy()
login_manager = LoginManager()

logger = logging.getLogger(__name__)


def create_app(overrides=None):
    from .config import Config, configure_logging, engine_options

    app = Flask(__name__)
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)
    app.config.setdefault('SQLALCHEMY_ENGINE_OPTIONS', engine_options(app.config))

    configure_logging(app.config['LOG_LEVEL'])

    db.init_app(app)
    login_manager.init_app(app)

    from .errors import ParkingError
    from .models import User

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({"error": "unauthorized", "message": "Login required",
                        "retryable": False}), 401

    @app.errorhandler(ParkingError)
    def handle_parking_error(exc):
        log = logger.warning if exc.status_code >= 409 else logger.info
        log(f"{exc.kind}: {exc.message}")
        return jsonify(exc.to_dict()), exc.status_code

    @app.errorhandler(RequestValidationError)
    def handle_request_error(exc):
        details = [{"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
                   for err in exc.errors()]
        return jsonify({"error": "validation_error", "message": "Invalid request body",
                        "retryable": False, "details": details}), 400

    from .routes import main
    from .admin_routes import admin
    from .user_routes import user

    app.register_blueprint(main, url_prefix='/auth')
    app.register_blueprint(admin)
    app.register_blueprint(user)

    with app.app_context():
        db.create_all()

        # Auto-create admin user
        from werkzeug.security import generate_password_hash
        username = app.config['ADMIN_USERNAME']
        if not User.query.filter_by(username=username).first():
            admin_user = User(
                username=username,
                password=generate_password_hash(app.config['ADMIN_PASSWORD']),
                is_admin=True,
            )
            db.session.add(admin_user)
            db.session.commit()
            logger.info(f"Seeded admin account '{username}'")

    return app
