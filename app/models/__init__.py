"""
Shared SQLAlchemy handle.

Every model module imports ``db`` from here so that a single
``SQLAlchemy`` instance is bound by ``create_app``.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
