"""
WSGI / Flask-Migrate entry point.

Usage:
    gunicorn wsgi:app
    flask --app wsgi db migrate -m "description"
    flask --app wsgi db upgrade
    flask --app wsgi outbox-dispatch --retry-failed
"""

from buildtrack import create_app

app = create_app()
