"""User and admin account exceptions."""

from fastapi import HTTPException, status


class UserException(HTTPException):
    """Base user exception."""

    def __init__(self, detail: str = "User operation failed", status_code: int = status.HTTP_400_BAD_REQUEST):
        super().__init__(status_code=status_code, detail=detail)


class UserNotFound(UserException):
    """Raised when user is not found."""

    def __init__(self):
        super().__init__(detail="User not found", status_code=status.HTTP_404_NOT_FOUND)


class AdminNotFound(UserException):
    """Raised when admin is not found."""

    def __init__(self):
        super().__init__(detail="Admin not found", status_code=status.HTTP_404_NOT_FOUND)


class UserAlreadyExists(UserException):
    """Raised when an account identifier is already taken."""

    def __init__(self, field: str = "user"):
        super().__init__(detail=f"{field.capitalize()} already registered", status_code=status.HTTP_409_CONFLICT)


class UsernameAlreadyExists(UserAlreadyExists):
    """Raised when username already exists."""

    def __init__(self):
        super().__init__(field="username")


class EmailAlreadyExists(UserAlreadyExists):
    """Raised when email already exists."""

    def __init__(self):
        super().__init__(field="email")


class CannotDeleteOwnAccount(UserException):
    """Raised when an admin tries to delete their own account."""

    def __init__(self):
        super().__init__(detail="Cannot delete your own account")
