from typing import Any, Dict, List, Optional, Union
from pydantic import BaseModel, EmailStr, Field

class UserCreds(BaseModel):
    email: EmailStr
    password: str

class GenerateRequest(BaseModel):
    instruction: str
    content_type: Optional[str] = None

class VariationsRequest(BaseModel):
    instruction: str
    content_type: Optional[str] = None
    count: Optional[int] = None

class ArtifactCreate(BaseModel):
    """Create a website: metadata plus the instruction to generate it from."""
    instruction: str
    content_type: Optional[str] = None
    display_name: Optional[str] = None
    description: Optional[str] = None
    visibility: Optional[str] = None
    tags: Union[List[str], str, None] = None
    thumbnail: Optional[str] = None

class ArtifactEdit(BaseModel):
    edit_instruction: str
    is_major_edit: bool = False

class ArtifactFork(BaseModel):
    display_name: Optional[str] = None
    description: Optional[str] = None
    visibility: Optional[str] = None
    tags: Union[List[str], str, None] = None
    instruction: Optional[str] = None

class ArtifactUpdate(BaseModel):
    """Metadata fields; anything left out is unchanged."""
    display_name: Optional[str] = None
    description: Optional[str] = None
    visibility: Optional[str] = None
    tags: Union[List[str], str, None] = None
    thumbnail: Optional[str] = None

class UserResponse(BaseModel):
    success: bool
    user_id: str
    message: str = "User registered successfully"

class LoginResponse(BaseModel):
    success: bool
    token: str
    message: str = "Login successful"

class MessageResponse(BaseModel):
    success: bool
    message: str

class GeneratedResponse(BaseModel):
    success: bool
    content: str
    instruction: str
    content_type: str

class VariationsResponse(BaseModel):
    success: bool
    variations: List[Dict[str, Any]]
    count: int

class ArtifactResponse(BaseModel):
    """Single website, with the version the operation produced (if any)."""
    success: bool
    artifact: Dict[str, Any]
    version: Optional[Dict[str, Any]] = None
    message: str = "Website operation successful"

class ArtifactListResponse(BaseModel):
    success: bool
    artifacts: List[Dict[str, Any]]
    count: int

class VersionListResponse(BaseModel):
    success: bool
    artifact: Dict[str, Any]
    versions: List[Dict[str, Any]]
    count: int

class VersionResponse(BaseModel):
    success: bool
    version: Dict[str, Any]

class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    error_type: str
    retryable: bool = Field(default=False)
