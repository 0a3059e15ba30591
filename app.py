from flask import Flask, jsonify
from flask_cors import CORS
import logging
import os
from dotenv import load_dotenv
import re
from datetime import timedelta

from extensions import db, migrate, jwt, socketio, scheduler
from errors import register_error_handlers

load_dotenv()

DEFAULT_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:5173",
    re.compile(r"^https://.*\.vercel\.app$"),
]


def _database_url():
    # Fix Postgres URL for SQLAlchemy
    database_url = os.getenv('DATABASE_URL', 'sqlite:///foodshare.db')
    if database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql://", 1)
    return database_url


def _register_jwt_callbacks():
    """Missing, malformed and expired credentials are all a 401."""

    def unauthorized(message):
        return jsonify({'error': message, 'kind': 'Unauthorized'}), 401

    @jwt.unauthorized_loader
    def missing_token(reason):
        return unauthorized('Authentication required. Please login to access this resource.')

    @jwt.invalid_token_loader
    def invalid_token(reason):
        return unauthorized('Invalid token. Please login again.')

    @jwt.expired_token_loader
    def expired_token(jwt_header, jwt_payload):
        return unauthorized('Token has expired. Please login again.')

    @jwt.revoked_token_loader
    def revoked_token(jwt_header, jwt_payload):
        return unauthorized('Token has been revoked.')


def create_app(config_overrides=None):
    """
    The Application Factory.
    Creates and configures the app, but does not run it.
    """
    app = Flask(__name__)

    # --- CONFIGURATION ---
    app.config['SECRET_KEY'] = os.getenv('SECRET_KEY', 'default_secret_key')
    app.config['SQLALCHEMY_DATABASE_URI'] = _database_url()
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
    app.config['JWT_SECRET_KEY'] = os.getenv('JWT_SECRET_KEY', 'fallback-secret-key')
    app.config['JWT_ACCESS_TOKEN_EXPIRES'] = timedelta(
        minutes=int(os.getenv('JWT_ACCESS_TOKEN_EXPIRES', '25')))
    app.config['EXPIRY_SWEEP_MINUTES'] = int(os.getenv('EXPIRY_SWEEP_MINUTES', '15'))
    app.config['LOG_LEVEL'] = os.getenv('LOG_LEVEL', 'INFO')

    # Overrides land before the extensions read the config
    if config_overrides:
        app.config.update(config_overrides)

    logging.basicConfig(
        level=app.config['LOG_LEVEL'],
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    # --- INITIALIZE EXTENSIONS ---
    db.init_app(app)
    migrate.init_app(app, db)
    jwt.init_app(app)
    socketio.init_app(app)
    # Note: We init scheduler here, but start it in __main__
    scheduler.init_app(app)

    _register_jwt_callbacks()
    register_error_handlers(app)

    # --- CORS CONFIGURATION ---
    origins = os.getenv('CORS_ORIGINS')
    CORS(app, resources={
        r"/api/*": {
            "origins": origins.split(',') if origins else DEFAULT_ORIGINS,
            "methods": ["GET", "POST", "PATCH", "PUT", "DELETE", "OPTIONS"],
            "allow_headers": ["Content-Type", "Authorization", "X-Requested-With"],
            "supports_credentials": True
        }
    })

    # --- REGISTER BLUEPRINTS ---
    # Import inside the function to avoid circular imports
    from routes.auth import auth_bp
    from routes.donations import donations_bp
    from routes.restaurants import restaurants_bp
    from routes.tasks import tasks_bp
    from routes.dashboard import dashboard_bp
    from routes.admin import admin_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(donations_bp)
    app.register_blueprint(restaurants_bp)
    app.register_blueprint(tasks_bp)
    app.register_blueprint(dashboard_bp)
    app.register_blueprint(admin_bp)

    return app


# --- ENTRY POINT ---
# This only runs if you type 'python app.py'
if __name__ == "__main__":
    from scheduler import init_scheduler

    app = create_app()

    # Start the Scheduler only when running the server (not during tests)
    init_scheduler(app)

    socketio.run(app, debug=os.getenv('FLASK_DEBUG') == '1')
