"""
Shiftbook offline client
Auth domain model.

Models:
    - User: local account, optionally linked to one employee.
"""

from shiftbook.models import db
from shiftbook.models.base import SyncableMixin

ROLE_USER = "Usuario"
ROLE_SUPERVISOR = "Supervisor"
ROLE_ADMIN = "Administrador"
ROLES = (ROLE_USER, ROLE_SUPERVISOR, ROLE_ADMIN)


class User(SyncableMixin, db.Model):
    """Local user account. ``password`` is an opaque string owned by the server."""

    __tablename__ = "users"
    COLLECTION = "users"

    username = db.Column(db.String(80), nullable=False, unique=True, index=True)
    password = db.Column(db.String(255), nullable=True)
    role = db.Column(db.String(30), nullable=False, default=ROLE_USER)
    employee_id = db.Column(db.String(64), nullable=True, index=True)
