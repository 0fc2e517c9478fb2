"""
Intravatar - gravatar compatible avatar service.

Serves avatars from a local store, falling back to remote avatar services
and default images, and accepts new avatars through an upload that must be
confirmed (by email when SMTP is configured) before it is published.
"""

from __future__ import annotations

import logging
import re
import time
from typing import Optional

from fastapi import (
    BackgroundTasks,
    Depends,
    FastAPI,
    File,
    Form,
    HTTPException,
    Query,
    Request,
    UploadFile,
)
from fastapi.responses import Response

from .blobstore import AVATAR_DIR, UNCONFIRMED_DIR, FileBlobStore
from .cascade import AvatarResolver
from .config import Settings, get_settings
from .errors import (
    ConfirmationError,
    DecodeError,
    NotificationError,
    StorageError,
    TransformError,
    UnsupportedFormatError,
    ValidationError,
)
from .health import router as health_router
from .mailer import ConfirmationMailer
from .models import AvatarRequest, ConfirmResponse, IndexResponse, UploadResponse
from .pending import PendingUploadStore
from .remote import RemoteAvatarClient
from .upload import UploadWorkflow

logger = logging.getLogger("intravatar.main")

# {hash}[.{format}]
AVATAR_NAME_RE = re.compile(r"^([a-zA-Z0-9]+)(?:\.([0-9a-zA-Z]+))?$")


def _error(status_code: int, message: str, exc: Exception) -> HTTPException:
    logger.warning("Error: %s (%s)", message, exc)
    return HTTPException(
        status_code=status_code,
        detail={"message": message, "error": str(exc)},
    )


def get_resolver(request: Request) -> AvatarResolver:
    return request.app.state.resolver


def get_workflow(request: Request) -> UploadWorkflow:
    return request.app.state.workflow


def _avatar_path(identity_hash: str) -> str:
    return f"/avatar/{identity_hash}"


def _cache_breaker() -> str:
    return str(time.time_ns())


def create_app(
    settings: Optional[Settings] = None,
    remote_client: Optional[RemoteAvatarClient] = None,
    mailer: Optional[ConfirmationMailer] = None,
) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Service configuration (read from the environment when omitted)
        remote_client: Client for remote avatar services
        mailer: Confirmation mailer (built from settings when SMTP is configured)

    Raises:
        StorageError: If the data directories cannot be created
    """
    settings = settings or get_settings()

    store = FileBlobStore(settings.DATA_DIR)
    store.ensure_dirs(AVATAR_DIR, UNCONFIRMED_DIR)
    pending = PendingUploadStore(settings.pending_index_path, settings.PENDING_TTL_SECONDS)

    app = FastAPI(
        title="Intravatar",
        description="Gravatar compatible avatar service with confirmed uploads.",
        version=settings.SERVICE_VERSION,
    )
    app.state.settings = settings
    app.state.store = store
    app.state.resolver = AvatarResolver(settings, store, remote_client)
    app.state.workflow = UploadWorkflow(settings, store, pending, mailer)

    app.include_router(health_router)

    @app.get("/", response_model=IndexResponse, summary="Service info")
    def index() -> IndexResponse:
        return IndexResponse(
            avatar_link=settings.service_url + "avatar/",
            host_name=settings.host_name,
        )

    @app.get(
        "/avatar/{name}",
        summary="Get avatar",
        description="Resolve an avatar by hash, with optional .jpg/.png/.gif extension.",
    )
    def get_avatar(
        name: str,
        s: Optional[str] = Query(default=None, description="Size in pixels (8-512)"),
        d: Optional[str] = Query(default=None, description="Default option, '404' for a strict lookup"),
        resolver: AvatarResolver = Depends(get_resolver),
    ) -> Response:
        m = AVATAR_NAME_RE.match(name)
        if not m:
            raise HTTPException(status_code=404, detail="Not Found")
        try:
            avatar_request = AvatarRequest.from_query(m.group(1), s, d, m.group(2))
        except UnsupportedFormatError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e

        avatar = resolver.resolve(avatar_request)
        if avatar is None:
            raise HTTPException(status_code=404, detail="Not Found")

        headers = {}
        if avatar.cache_control:
            headers["Cache-Control"] = avatar.cache_control
        if avatar.last_modified:
            headers["Last-Modified"] = avatar.last_modified
        return Response(content=avatar.data, media_type=avatar.media_type, headers=headers)

    @app.post("/upload", response_model=UploadResponse, summary="Upload avatar")
    def upload(
        background_tasks: BackgroundTasks,
        email: str = Form(default=""),
        image: Optional[UploadFile] = File(default=None),
        workflow: UploadWorkflow = Depends(get_workflow),
    ) -> UploadResponse:
        if image is None:
            raise _error(400, "Please choose a file to upload", ValidationError("image is missing"))
        data = image.file.read()
        try:
            outcome = workflow.submit(email, data, dispatch=background_tasks.add_task)
        except ValidationError as e:
            raise _error(400, "Please use a valid email", e) from e
        except (DecodeError, TransformError) as e:
            raise _error(
                400,
                "Failed to read image file. Note that only jpeg, png and gif images are supported",
                e,
            ) from e
        except ConfirmationError as e:
            raise _error(410, "Error confirming upload", e) from e
        except StorageError as e:
            raise _error(500, "Error while creating file", e) from e

        if outcome.confirmed:
            return UploadResponse(
                status="confirmed",
                email=outcome.email,
                avatar=_avatar_path(outcome.identity_hash),
                uniq=_cache_breaker(),
            )
        return UploadResponse(status="pending", email=outcome.email)

    @app.get("/confirm/{token}", response_model=ConfirmResponse, summary="Confirm upload")
    def confirm(token: str, workflow: UploadWorkflow = Depends(get_workflow)) -> ConfirmResponse:
        try:
            identity_hash = workflow.confirm(token)
        except ConfirmationError as e:
            raise _error(410, "Error confirming upload", e) from e
        except StorageError as e:
            raise _error(500, "Error confirming upload", e) from e
        return ConfirmResponse(avatar=_avatar_path(identity_hash), uniq=_cache_breaker())

    @app.on_event("startup")
    def startup_event() -> None:
        logging.basicConfig(level=logging.INFO)
        logger.info("Starting %s v%s", settings.SERVICE_NAME, settings.SERVICE_VERSION)
        logger.info("data dir = %s", settings.DATA_DIR)
        if settings.remote_urls:
            logger.info("Missing avatars will be looked up at %s", settings.remote_urls)
        policy = settings.default_policy
        if policy.image:
            logger.info("Using %s as default image", policy.image)
        elif policy.remote_default:
            logger.info("Remote default image: '?d=%s'", policy.remote_default)

        app.state.workflow.purge_expired()

        workflow = app.state.workflow
        if settings.TEST_MAIL and workflow.mailer is not None:
            try:
                workflow.mailer.send_test_mail(settings.TEST_MAIL)
            except NotificationError as e:
                logger.error("Test email failed: %s", e)

    @app.on_event("shutdown")
    def shutdown_event() -> None:
        logger.info("Shutting down %s", settings.SERVICE_NAME)
        app.state.resolver.remote_client.close()

    return app
