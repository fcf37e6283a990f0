"""User repository: local accounts and their employee links."""

import uuid

from shiftbook.models.auth import ROLE_ADMIN, ROLES, User
from shiftbook.repositories.base import BaseRepository, OperationResult

MSG_USERNAME_EXISTS = "El nombre de usuario ya existe."
MSG_EMPLOYEE_LINKED = "Este empleado ya está vinculado a otro usuario."
MSG_NOT_FOUND = "Usuario no encontrado."
MSG_LAST_ADMIN = "No se puede eliminar al último Administrador."
MSG_INVALID_ROLE = "Rol de usuario no válido."
MSG_USERNAME_REQUIRED = "El nombre de usuario es obligatorio."


class UserRepository(BaseRepository):
    COLLECTION = User.COLLECTION

    def sort_key(self, record):
        return record.get("username", "")

    # ── Queries ──────────────────────────────────────────────────────────

    def find_by_username(self, username: str) -> dict | None:
        for user in self._items:
            if user.get("username") == username:
                return dict(user)
        return None

    def verify_credentials(self, username: str, password: str) -> dict | None:
        """Return the matching user for an offline login, without the password."""
        user = self.find_by_username(username)
        if user is None or not password or user.get("password") != password:
            return None
        user.pop("password", None)
        return user

    def _username_taken(self, username: str, exclude_id: str | None = None) -> bool:
        return any(
            u.get("username") == username and u["id"] != exclude_id for u in self._items
        )

    def _employee_linked(self, employee_id: str | None, exclude_id: str | None = None) -> bool:
        if not employee_id:
            return False
        return any(
            u.get("employeeId") == employee_id and u["id"] != exclude_id for u in self._items
        )

    # ── Mutations ────────────────────────────────────────────────────────

    def add_user(self, data: dict, actor: str | None) -> OperationResult:
        username = (data.get("username") or "").strip()
        if not username:
            return OperationResult.rejected(MSG_USERNAME_REQUIRED)
        role = data.get("role") or ROLES[0]
        if role not in ROLES:
            return OperationResult.rejected(MSG_INVALID_ROLE)
        if self._username_taken(username):
            self.audit.add_log(actor, "Add User Rejected - Username Exists", {"username": username})
            return OperationResult.rejected(MSG_USERNAME_EXISTS)
        employee_id = data.get("employeeId") or None
        if self._employee_linked(employee_id):
            self.audit.add_log(actor, "Add User Rejected - Employee Already Linked",
                               {"username": username, "employeeId": employee_id})
            return OperationResult.rejected(MSG_EMPLOYEE_LINKED)

        record = self.stamp({
            "id": data.get("id") or str(uuid.uuid4()),
            "username": username,
            "password": data.get("password") or "",
            "role": role,
        })
        if employee_id:
            record["employeeId"] = employee_id
        return self._save(
            record, actor=actor,
            action="User Added", failed_action="Add User Failed",
            details={"username": username, "role": role},
        )

    def update_user(self, user_id: str, changes: dict, actor: str | None) -> OperationResult:
        """Apply ``changes``; an empty ``password`` keeps the current one."""
        current = self.get(user_id)
        if current is None:
            self.audit.add_log(actor, "Update User Rejected - Not Found", {"userId": user_id})
            return OperationResult.rejected(MSG_NOT_FOUND)

        if "username" in changes:
            username = (changes.get("username") or "").strip()
            if not username:
                return OperationResult.rejected(MSG_USERNAME_REQUIRED)
            if self._username_taken(username, exclude_id=user_id):
                self.audit.add_log(actor, "Update User Rejected - Username Exists",
                                   {"userId": user_id, "username": username})
                return OperationResult.rejected(MSG_USERNAME_EXISTS)
            changes = {**changes, "username": username}
        if "role" in changes and changes["role"] not in ROLES:
            return OperationResult.rejected(MSG_INVALID_ROLE)
        if self._employee_linked(changes.get("employeeId"), exclude_id=user_id):
            self.audit.add_log(actor, "Update User Rejected - Employee Already Linked",
                               {"userId": user_id, "employeeId": changes.get("employeeId")})
            return OperationResult.rejected(MSG_EMPLOYEE_LINKED)

        updated = dict(current)
        for key in ("username", "role", "employeeId"):
            if key in changes:
                if changes[key]:
                    updated[key] = changes[key]
                else:
                    updated.pop(key, None)
        if changes.get("password"):
            updated["password"] = changes["password"]
        self.stamp(updated)

        logged_changes = {k: v for k, v in changes.items() if k != "password"}
        if changes.get("password"):
            logged_changes["password"] = "********"
        return self._save(
            updated, actor=actor,
            action="User Updated", failed_action="Update User Failed",
            details={"userId": user_id, "changes": logged_changes},
        )

    def delete_user(self, user_id: str, actor: str | None) -> OperationResult:
        """Hard delete. The last remaining Administrador cannot be removed."""
        current = self.get(user_id)
        if current is None:
            self.audit.add_log(actor, "Delete User Rejected - Not Found", {"userId": user_id})
            return OperationResult.rejected(MSG_NOT_FOUND)
        if current.get("role") == ROLE_ADMIN:
            admins = [u for u in self._items if u.get("role") == ROLE_ADMIN]
            if len(admins) <= 1:
                self.audit.add_log(actor, "Delete User Rejected - Last Admin",
                                   {"userId": user_id, "username": current.get("username")})
                return OperationResult.rejected(MSG_LAST_ADMIN)
        return self._remove(
            user_id, actor=actor,
            action="User Deleted", failed_action="Delete User Failed",
            details={"userId": user_id, "username": current.get("username")},
        )
