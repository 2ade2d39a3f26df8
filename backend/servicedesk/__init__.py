from flask import Flask
from werkzeug.exceptions import HTTPException
from flask_jwt_extended import JWTManager
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool
from sqlalchemy.orm import sessionmaker, scoped_session
from dotenv import load_dotenv
from typing import Optional, Dict, Any
import logging
import os

load_dotenv()

db_engine = None
SessionLocal = None
jwt = JWTManager()


def create_app(config: Optional[Dict[str, Any]] = None):
    global db_engine, SessionLocal
    app = Flask(__name__)

    app.config['JWT_SECRET_KEY'] = os.getenv('JWT_SECRET_KEY', 'dev-secret')
    app.config['DATABASE_URL'] = os.getenv('DATABASE_URL', 'sqlite:///dev.db')
    app.config['STORAGE_ROOT'] = os.getenv('STORAGE_ROOT', os.path.abspath('storage'))
    app.config['MAX_IMAGE_BYTES'] = int(os.getenv('MAX_IMAGE_BYTES', str(5 * 1024 * 1024)))
    app.config['CONFLICT_RETRIES'] = int(os.getenv('CONFLICT_RETRIES', '3'))
    app.config['LOG_LEVEL'] = os.getenv('LOG_LEVEL', 'INFO')

    if config:
        # allow tests or callers to override default config values
        app.config.update(config)

    app.logger.setLevel(app.config['LOG_LEVEL'])
    logging.getLogger('servicedesk').setLevel(app.config['LOG_LEVEL'])

    # Database
    db_url = app.config['DATABASE_URL']
    if db_url.endswith(':memory:'):
        # Ensure a single shared in-memory SQLite database across all sessions
        db_engine = create_engine(
            db_url,
            echo=False,
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        db_engine = create_engine(db_url, echo=False, future=True)
    SessionLocal = scoped_session(sessionmaker(bind=db_engine, expire_on_commit=False, autoflush=False))

    jwt.init_app(app)

    from .routes.iam import iam_bp  # users & auth
    from .routes.tickets import tickets_bp  # ticket lifecycle
    from .routes.devices import devices_bp  # devices registry
    from .routes.reports import rpt_bp  # dashboards
    from .routes.legacy import legacy_bp  # minimal backend kept for existing clients
    from .routes.storage import storage_bp  # ticket images
    app.register_blueprint(iam_bp, url_prefix='/iam')
    app.register_blueprint(tickets_bp, url_prefix='/tickets')
    app.register_blueprint(devices_bp, url_prefix='/devices')
    app.register_blueprint(rpt_bp, url_prefix='/reports')
    app.register_blueprint(storage_bp, url_prefix='/storage')
    app.register_blueprint(legacy_bp)

    @app.teardown_appcontext
    def remove_session(exc):  # type: ignore
        SessionLocal.remove()

    # Unified error handler producing standardized JSON shape
    @app.errorhandler(Exception)
    def handle_errors(e):  # type: ignore
        if isinstance(e, HTTPException):
            payload = {
                'error': {
                    'status': e.code,
                    'title': e.name,
                    'detail': e.description,
                }
            }
            return payload, e.code
        # Unhandled exception
        app.logger.exception('Unhandled exception')
        SessionLocal.rollback()
        return {
            'error': {
                'status': 500,
                'title': 'Internal Server Error',
                'detail': 'Unexpected error'
            }
        }, 500

    return app


def get_db():
    return SessionLocal()
