import contextlib
import logging
import os
from typing import Callable, Optional

from fastapi import APIRouter, Depends, FastAPI, Header, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .cache import GenerationCache
from .config import Config
from .domain import AuthError
from .errors import (
    AccessDeniedError,
    ConflictError,
    GeneratorRateLimited,
    NotFoundError,
    SiteGenError,
    UpstreamGenerationError,
    ValidationError,
)
from .generator import ContentGenerator, GuardedGenerator, UnconfiguredGenerator
from .models import (
    ArtifactCreate,
    ArtifactEdit,
    ArtifactFork,
    ArtifactListResponse,
    ArtifactResponse,
    ArtifactUpdate,
    ErrorResponse,
    GeneratedResponse,
    GenerateRequest,
    LoginResponse,
    MessageResponse,
    UserCreds,
    UserResponse,
    VariationsRequest,
    VariationsResponse,
    VersionListResponse,
    VersionResponse,
)
from .services import (
    ArtifactStore,
    AuthService,
    Database,
    ForkEngine,
    VariationEngine,
    VersionStore,
)
from .utils import split_tags, time_now

logger = logging.getLogger(__name__)

router = APIRouter()


def status_for(error: SiteGenError) -> int:
    """HTTP status code for a store error."""
    if isinstance(error, ValidationError):
        return 400
    if isinstance(error, AccessDeniedError):
        return 403
    if isinstance(error, NotFoundError):
        return 404
    if isinstance(error, ConflictError):
        return 409
    if isinstance(error, GeneratorRateLimited):
        return 429
    if isinstance(error, UpstreamGenerationError):
        return 503 if error.retryable else 502
    return 500


async def handle_store_error(request: Request, error: SiteGenError):
    status = status_for(error)
    if status >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, error)
    body = ErrorResponse(
        error=str(error),
        error_type=type(error).__name__,
        retryable=getattr(error, "retryable", False),
    )
    return JSONResponse(status_code=status, content=body.model_dump())


async def handle_auth_error(request: Request, error: AuthError):
    body = ErrorResponse(error=str(error), error_type="AuthError")
    return JSONResponse(status_code=401, content=body.model_dump())


async def handle_unexpected_error(request: Request, error: Exception):
    logger.exception("Unexpected error in %s %s", request.method, request.url.path)
    body = ErrorResponse(error="Internal server error", error_type="InternalError")
    return JSONResponse(status_code=500, content=body.model_dump())


# -------------------------------
# Dependencies
# -------------------------------

def get_auth(request: Request) -> AuthService:
    return request.app.state.auth


def get_artifacts(request: Request) -> ArtifactStore:
    return request.app.state.artifacts


def get_forks(request: Request) -> ForkEngine:
    return request.app.state.forks


def get_variations(request: Request) -> VariationEngine:
    return request.app.state.variations


def get_current_user(authorization: Optional[str] = Header(None),
                     auth: AuthService = Depends(get_auth)) -> str:
    """
    Resolve the requester from the Authorization header.

    Raises:
        AuthError: If the header is missing or the token is invalid (401)
    """
    return auth.validate(authorization)


def get_optional_user(authorization: Optional[str] = Header(None),
                      auth: AuthService = Depends(get_auth)) -> Optional[str]:
    """Like ``get_current_user`` but anonymous callers get ``None``."""
    if not authorization:
        return None
    return get_current_user(authorization, auth)


# -------------------------------
# Auth routes
# -------------------------------

@router.post("/register", response_model=UserResponse)
async def register(creds: UserCreds, auth: AuthService = Depends(get_auth)):
    try:
        uid = auth.add_user(creds.email, creds.password)
    except AuthError as e:
        raise ValidationError(str(e))
    return UserResponse(success=True, user_id=uid)


@router.post("/login", response_model=LoginResponse)
async def login(creds: UserCreds, auth: AuthService = Depends(get_auth)):
    token = auth.login(creds.email, creds.password)
    return LoginResponse(success=True, token=token)


@router.post("/logout", response_model=MessageResponse)
async def logout(authorization: str = Header(...), auth: AuthService = Depends(get_auth)):
    if not auth.logout(authorization):
        raise AuthError("Invalid or expired session token")
    return MessageResponse(success=True, message="Logged out successfully")


# -------------------------------
# Generation without persistence
# -------------------------------

@router.post("/generate", response_model=GeneratedResponse)
def generate(body: GenerateRequest, engine: VariationEngine = Depends(get_variations)):
    content = engine.preview(body.instruction, body.content_type)
    return GeneratedResponse(
        success=True,
        content=content,
        instruction=body.instruction,
        content_type=body.content_type or engine.config.DEFAULT_CONTENT_TYPE,
    )


@router.post("/variations", response_model=VariationsResponse)
def generate_variations(body: VariationsRequest, engine: VariationEngine = Depends(get_variations)):
    variations = engine.generate_variations(body.instruction, body.content_type, body.count)
    return VariationsResponse(
        success=True,
        variations=[v.to_dict() for v in variations],
        count=len(variations),
    )


# -------------------------------
# Artifact routes
# -------------------------------

@router.post("/artifacts", response_model=ArtifactResponse, status_code=201)
def create_artifact(body: ArtifactCreate, user_id: str = Depends(get_current_user),
                    store: ArtifactStore = Depends(get_artifacts)):
    artifact, version = store.create(
        user_id,
        {
            "display_name": body.display_name,
            "description": body.description,
            "visibility": body.visibility,
            "tags": body.tags,
            "thumbnail": body.thumbnail,
        },
        {"instruction": body.instruction, "content_type": body.content_type},
    )
    return ArtifactResponse(
        success=True,
        artifact=artifact.to_dict(),
        version=version.to_dict(),
        message="Website created successfully",
    )


@router.get("/artifacts", response_model=ArtifactListResponse)
def list_artifacts(owner_id: Optional[str] = None, public_only: bool = False,
                   content_type: Optional[str] = None, tags: Optional[str] = None,
                   limit: Optional[int] = None,
                   requester_id: Optional[str] = Depends(get_optional_user),
                   store: ArtifactStore = Depends(get_artifacts)):
    artifacts = store.list(
        owner_id=owner_id,
        public_only=public_only,
        content_type=content_type,
        tags=split_tags(tags),
        limit=limit,
        requester_id=requester_id,
    )
    return ArtifactListResponse(
        success=True,
        artifacts=[a.to_dict() for a in artifacts],
        count=len(artifacts),
    )


@router.get("/artifacts/{artifact_id}", response_model=ArtifactResponse)
def get_artifact(artifact_id: str, include_content: bool = True,
                 requester_id: Optional[str] = Depends(get_optional_user),
                 store: ArtifactStore = Depends(get_artifacts)):
    view = store.get(artifact_id, requester_id, include_content=include_content)
    data = view.to_dict()
    return ArtifactResponse(
        success=True,
        artifact=data,
        version=data["latest_version"],
        message="Website retrieved successfully",
    )


@router.put("/artifacts/{artifact_id}", response_model=ArtifactResponse)
def update_artifact(artifact_id: str, body: ArtifactUpdate,
                    user_id: str = Depends(get_current_user),
                    store: ArtifactStore = Depends(get_artifacts)):
    artifact = store.update_metadata(artifact_id, user_id, body.model_dump(exclude_none=True))
    return ArtifactResponse(success=True, artifact=artifact.to_dict(), message="Website updated successfully")


@router.delete("/artifacts/{artifact_id}", response_model=MessageResponse)
def delete_artifact(artifact_id: str, user_id: str = Depends(get_current_user),
                    store: ArtifactStore = Depends(get_artifacts)):
    store.delete(artifact_id, user_id)
    return MessageResponse(success=True, message="Website deleted successfully")


@router.post("/artifacts/{artifact_id}/edit", response_model=ArtifactResponse)
def edit_artifact(artifact_id: str, body: ArtifactEdit,
                  user_id: str = Depends(get_current_user),
                  store: ArtifactStore = Depends(get_artifacts)):
    artifact, version = store.edit(artifact_id, user_id, body.edit_instruction, body.is_major_edit)
    return ArtifactResponse(
        success=True,
        artifact=artifact.to_dict(),
        version=version.to_dict(),
        message="Website edited successfully",
    )


@router.post("/artifacts/{artifact_id}/fork", response_model=ArtifactResponse, status_code=201)
def fork_artifact(artifact_id: str, body: Optional[ArtifactFork] = None,
                  user_id: str = Depends(get_current_user),
                  engine: ForkEngine = Depends(get_forks)):
    overrides = body.model_dump(exclude_none=True) if body else {}
    artifact, version = engine.fork(artifact_id, user_id, overrides)
    return ArtifactResponse(
        success=True,
        artifact=artifact.to_dict(),
        version=version.to_dict(),
        message="Website forked successfully",
    )


@router.get("/artifacts/{artifact_id}/versions", response_model=VersionListResponse)
def list_versions(artifact_id: str, requester_id: Optional[str] = Depends(get_optional_user),
                  store: ArtifactStore = Depends(get_artifacts)):
    artifact, versions = store.list_versions(artifact_id, requester_id)
    return VersionListResponse(
        success=True,
        artifact={
            "id": artifact.id,
            "display_name": artifact.display_name,
            "owner_id": artifact.owner_id,
            "visibility": artifact.visibility,
            "version_count": artifact.version_count,
        },
        versions=versions,
        count=len(versions),
    )


@router.get("/artifacts/{artifact_id}/forks", response_model=ArtifactListResponse)
def list_forks(artifact_id: str, requester_id: Optional[str] = Depends(get_optional_user),
               store: ArtifactStore = Depends(get_artifacts)):
    forks = store.list_forks(artifact_id, requester_id)
    return ArtifactListResponse(success=True, artifacts=[a.to_dict() for a in forks], count=len(forks))


@router.get("/versions/{version_id}", response_model=VersionResponse)
def get_version(version_id: str, requester_id: Optional[str] = Depends(get_optional_user),
                store: ArtifactStore = Depends(get_artifacts)):
    version = store.get_version(version_id, requester_id)
    return VersionResponse(success=True, version=version.to_dict())


@router.get("/health")
async def health_check(request: Request):
    state = request.app.state
    return {
        "status": "healthy",
        "timestamp": time_now(),
        "users_count": len(state.auth.users),
        "active_sessions": len(state.auth.active),
        "cache_entries": len(state.cache),
        "database_files": {
            "users_db": os.path.exists(state.config.USERS_DB_PATH),
            "sitegen_db": os.path.exists(state.config.DB_PATH),
        },
    }


# -------------------------------
# Application factory
# -------------------------------

def create_app(config: Optional[Config] = None, generator: Optional[ContentGenerator] = None,
               clock: Optional[Callable[[], float]] = None) -> FastAPI:
    """
    Build the API with its services wired together.

    Args:
        config (Config): Settings, read from the environment when omitted
        generator (ContentGenerator): Content engine; generation is unavailable when omitted
        clock (Callable): Time source for cache expiry, for tests

    Returns:
        FastAPI: Application with services on ``app.state``
    """
    config = config or Config.from_env()
    guarded = GuardedGenerator(generator or UnconfiguredGenerator(), config.GENERATION_TIMEOUT_SECONDS)

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Website generator API starting up (users: %d)", len(app.state.auth.users))
        yield
        guarded.shutdown()
        logger.info("Website generator API shutting down")

    app = FastAPI(
        title="Website Generator API",
        description="Versioned, forkable AI-generated websites",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    cache_kwargs = {"clock": clock} if clock else {}
    db = Database(config.DB_PATH)
    versions = VersionStore(db)
    cache = GenerationCache(guarded, config.CACHE_TTL_SECONDS, **cache_kwargs)
    auth = AuthService(config.USERS_DB_PATH)
    artifacts = ArtifactStore(db, versions, cache, auth, config)

    app.state.config = config
    app.state.auth = auth
    app.state.cache = cache
    app.state.artifacts = artifacts
    app.state.forks = ForkEngine(artifacts)
    app.state.variations = VariationEngine(cache, config)

    app.add_exception_handler(SiteGenError, handle_store_error)
    app.add_exception_handler(AuthError, handle_auth_error)
    app.add_exception_handler(Exception, handle_unexpected_error)
    app.include_router(router)
    return app


logging.basicConfig(
    level=Config.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
