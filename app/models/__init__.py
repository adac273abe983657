"""
Workflow Guidance Server
Database models package.

The shared Flask-SQLAlchemy instance lives here; model modules import ``db``
from this package and ``create_app`` imports each of them so that metadata
(and Alembic autogenerate) sees every table.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
