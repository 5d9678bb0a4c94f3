"""
Operations Approval Platform
Shared SQLAlchemy handle.

Every model module imports ``db`` from here so that Flask-Migrate sees a
single metadata object.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
