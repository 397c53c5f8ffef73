from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_cors import CORS
import os

# Shared database handle, bound to the app inside create_app().
db = SQLAlchemy()


def _default_database_uri():
    """Builds the SQLite path inside the per-user FarmTrack data folder."""
    # Get the standard folder for user-specific application data.
    # On Windows, this is typically C:\Users\YourUsername\AppData\Roaming
    app_data_path = os.environ.get('APPDATA')

    if app_data_path:
        farmtrack_data_folder = os.path.join(app_data_path, 'FarmTrack')
    else: # Fallback for other systems
        farmtrack_data_folder = os.path.join(os.path.expanduser("~"), '.FarmTrack')

    os.makedirs(farmtrack_data_folder, exist_ok=True)
    return f"sqlite:///{os.path.join(farmtrack_data_folder, 'database.db')}"


def _env_flag(name, default):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def create_app(test_config=None):
    """Application factory function."""
    app = Flask(__name__, instance_relative_config=False)

    app.config.from_mapping(
        SECRET_KEY=os.environ.get('FARMTRACK_SECRET_KEY', 'dev'),
        SQLALCHEMY_DATABASE_URI=os.environ.get('FARMTRACK_DATABASE_URI'),
        SQLALCHEMY_TRACK_MODIFICATIONS=False,
        NIGHT_CHECK_DEFAULT_TIME='21:00',
        SCHEDULER_ENABLED=_env_flag('FARMTRACK_SCHEDULER_ENABLED', True),
        AUTH_TOKEN_MAX_AGE=7 * 24 * 3600,
        CORS_ORIGINS=os.environ.get('FARMTRACK_CORS_ORIGINS', '*'),
    )
    if test_config is not None:
        app.config.update(test_config)
    if not app.config['SQLALCHEMY_DATABASE_URI']:
        app.config['SQLALCHEMY_DATABASE_URI'] = _default_database_uri()

    CORS(app, resources={r"/api/*": {"origins": app.config['CORS_ORIGINS']}})

    # Initialize extensions with the app
    db.init_app(app)

    from .scheduler import night_check
    night_check.init_app(app)

    with app.app_context():
        # Import and register the Blueprint
        from .routes import api
        app.register_blueprint(api, url_prefix='/api')

        from .commands import register_commands
        register_commands(app)

        # Create database tables for our models
        from . import models  # noqa: F401
        db.create_all()

    if app.config['SCHEDULER_ENABLED']:
        night_check.start()

    return app
