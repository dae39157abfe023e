"""
WSGI entry point for the tenant integrity service.

Usage:
    flask --app wsgi run
    flask --app wsgi tenancy-backfill [--apply]
"""

from app import create_app

app = create_app()
