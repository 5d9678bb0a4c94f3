"""
Flask-Migrate / Alembic entry point.

Usage:
    flask db upgrade
    flask seed-directory
    gunicorn wsgi:app
"""

from opsflow import create_app

app = create_app()
