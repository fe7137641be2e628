"""Role and permission exceptions."""

from fastapi import HTTPException, status


class RoleException(HTTPException):
    """Base role exception."""

    def __init__(self, detail: str = "Role operation failed", status_code: int = status.HTTP_400_BAD_REQUEST):
        super().__init__(status_code=status_code, detail=detail)


class RoleNotFound(RoleException):
    """Raised when a role does not exist."""

    def __init__(self):
        super().__init__(detail="Role not found", status_code=status.HTTP_404_NOT_FOUND)


class RoleAlreadyExists(RoleException):
    """Raised when a role name is taken."""

    def __init__(self):
        super().__init__(detail="Role name already exists", status_code=status.HTTP_409_CONFLICT)


class RoleInUse(RoleException):
    """Raised when deleting a role that accounts still reference."""

    def __init__(self):
        super().__init__(detail="Role is assigned to accounts and cannot be deleted", status_code=status.HTTP_409_CONFLICT)


class PermissionNotFound(RoleException):
    """Raised when a permission does not exist."""

    def __init__(self):
        super().__init__(detail="Permission not found", status_code=status.HTTP_404_NOT_FOUND)
