"""
WSGI entry point for the HTTP surface.

Usage:
    gunicorn wsgi:app
    flask --app wsgi db upgrade
    flask --app wsgi seed-workflow
    flask --app wsgi mcp-serve
"""

from app import create_app

app = create_app()
