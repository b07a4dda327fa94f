"""
WSGI / Flask-Migrate entry point.

Usage:
    flask --app wsgi db upgrade
    flask --app wsgi seed-checklist
    gunicorn wsgi:app
"""

from app import create_app

app = create_app()
