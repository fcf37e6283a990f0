"""
Shiftbook offline client
Database instance shared by every model module.

Usage:
    from shiftbook.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
