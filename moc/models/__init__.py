"""
MOC Workflow Service
Model package — owns the shared Flask-SQLAlchemy handle.

Usage:
    from moc.models import db
    from moc.models.moc_request import MocRequest
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
