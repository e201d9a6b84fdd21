"""
PKM Submission Portal
SQLAlchemy extension handle shared by every model module.

Usage:
    from pkm_portal.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
