"""
WSGI / Flask CLI entry point.

Usage:
    FLASK_APP=wsgi.py flask db upgrade
    FLASK_APP=wsgi.py flask generate-applications --year 2025
    gunicorn wsgi:app
"""

from benefit_engine import create_app

app = create_app()
