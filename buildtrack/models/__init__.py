"""
Factory Standards Build Tracker
Database models package.

All model modules import ``db`` from here; ``create_app`` imports every
module so ``db.create_all()`` and Flask-Migrate see the full metadata.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
