"""
WSGI entry point for the local API.

Usage:
    flask --app wsgi run            # development
    gunicorn wsgi:app               # anything longer-lived
"""

from shiftbook import create_app

app = create_app()
