"""
Database initialization script for deployment
Run with: python init_db.py
"""

from app import create_app
from models import db, init_default_data


def initialize_database():
    """Create tables and make sure a super admin exists."""
    app = create_app({'SEED_ADMIN': False})
    with app.app_context():
        app.logger.info('Creating database tables...')
        db.create_all()

        admin = init_default_data()
        app.logger.info(f'Super admin account: {admin.email}')


if __name__ == '__main__':
    initialize_database()
