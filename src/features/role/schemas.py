"""Role and permission schemas (DTOs)."""

from pydantic import BaseModel, Field


# Request schemas
class RoleCreateRequest(BaseModel):
    """Role creation request."""

    name: str = Field(..., min_length=2, max_length=50, pattern=r"^[a-zA-Z0-9_:-]+$")
    description: str | None = Field(None, max_length=500)


class RoleUpdateRequest(BaseModel):
    """Role update request. Omitted fields are unchanged."""

    name: str | None = Field(None, min_length=2, max_length=50, pattern=r"^[a-zA-Z0-9_:-]+$")
    description: str | None = Field(None, max_length=500)


class AssignPermissionRequest(BaseModel):
    """Grant a permission to a role."""

    permission_id: int


# Response schemas
class PermissionResponse(BaseModel):
    """Permission response."""

    id: int
    code: str
    description: str | None = None

    model_config = {"from_attributes": True}


class RoleResponse(BaseModel):
    """Role response with its granted permissions."""

    id: int
    name: str
    description: str | None = None
    permissions: list[PermissionResponse] = []

    model_config = {"from_attributes": True}
