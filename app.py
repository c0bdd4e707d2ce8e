import os

from flask import Flask

from blueprints.auth import auth_bp, load_current_user
from blueprints.clubs import clubs_bp
from blueprints.events import events_bp
from blueprints.matches import matches_bp
from blueprints.users import users_bp
from error_handlers import error_handlers_bp
from models import db, init_default_data

BASE_DIR = os.path.abspath(os.path.dirname(__file__))


def _database_uri() -> str:
    """Supports both a remote PostgreSQL URL and local SQLite."""
    database_url = os.environ.get('DATABASE_URL')
    if database_url:
        # Heroku-style URL fix (postgres:// -> postgresql://)
        if database_url.startswith('postgres://'):
            database_url = database_url.replace('postgres://', 'postgresql://', 1)
        return database_url

    default_sqlite_dir = os.path.join(BASE_DIR, 'instance')
    os.makedirs(default_sqlite_dir, exist_ok=True)
    sqlite_path = os.environ.get('SQLITE_PATH', os.path.join(default_sqlite_dir, 'courtclub.db'))
    return f'sqlite:///{sqlite_path}'


def create_app(test_config=None):
    app = Flask(__name__)

    app.config.from_mapping(
        SECRET_KEY=os.environ.get('SECRET_KEY', 'courtclub'),
        SQLALCHEMY_TRACK_MODIFICATIONS=False,
        JWT_SECRET=os.environ.get('JWT_SECRET'),
        JWT_EXPIRES_DAYS=int(os.environ.get('JWT_EXPIRES_DAYS', '7')),
        LOG_LEVEL=os.environ.get('LOG_LEVEL', 'INFO').upper(),
        SEED_ADMIN=True,
    )
    if test_config is not None:
        app.config.update(test_config)

    if not app.config.get('SQLALCHEMY_DATABASE_URI'):
        app.config['SQLALCHEMY_DATABASE_URI'] = _database_uri()
    if not app.config.get('JWT_SECRET'):
        app.config['JWT_SECRET'] = app.config['SECRET_KEY']
    if not app.config['SQLALCHEMY_DATABASE_URI'].startswith('sqlite'):
        app.config.setdefault(
            'SQLALCHEMY_ENGINE_OPTIONS', {'pool_pre_ping': True, 'pool_recycle': 300}
        )

    app.logger.setLevel(app.config['LOG_LEVEL'])

    db.init_app(app)

    with app.app_context():
        db.create_all()
        if app.config['SEED_ADMIN']:
            init_default_data()
        app.logger.info('Database initialized')

    app.register_blueprint(error_handlers_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(clubs_bp)
    app.register_blueprint(events_bp)
    app.register_blueprint(matches_bp)
    app.register_blueprint(users_bp)

    @app.before_request
    def before_request():
        """Resolve the bearer credential before every request."""
        load_current_user()

    return app


if __name__ == '__main__':
    create_app().run(debug=True, port=5000)
