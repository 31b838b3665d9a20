from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse

from program_builder.errors import InvalidInput, NotBuilt
from program_builder.models import BuildAccepted, BuildNotFound, BuildRequest
from program_builder.orchestrator import BuildOrchestrator
from program_builder.settings import Settings, get_settings
from program_builder.workspace import init_programs_root

API_DESCRIPTION = """
Program Builder - compile single-crate programs and download the binaries.

## Flow

1. `POST /build` with `{"program_name": "hello", "files": [["/src/lib.rs", "..."]]}`.
   The response carries the job `uuid` and returns before compilation starts.
2. Poll `GET /build/status/{uuid}` until `status` is `success` or `failed`.
   `stderr` holds the toolchain output in both cases.
3. Download the binary with `GET /deploy/{uuid}/{program_name}`.

`GET /build/logs/{uuid}` streams the toolchain output while the build runs.
"""


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        init_programs_root(settings)
        orchestrator = BuildOrchestrator.from_settings(settings)
        app.state.orchestrator = orchestrator
        try:
            yield
        finally:
            await orchestrator.shutdown()

    app = FastAPI(
        title="Program Builder",
        version="0.1.0",
        description=API_DESCRIPTION,
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.client_url],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )
    app.include_router(router)
    return app


def get_orchestrator(request: Request) -> BuildOrchestrator:
    return request.app.state.orchestrator


router = APIRouter()


@router.get("/health")
async def health():
    return {"status": "ok"}


@router.post(
    "/build",
    response_model=BuildAccepted,
    status_code=status.HTTP_202_ACCEPTED,
)
async def build(
    payload: BuildRequest,
    orchestrator: BuildOrchestrator = Depends(get_orchestrator),
) -> BuildAccepted:
    try:
        submitted = await orchestrator.submit_build(
            payload.program_name, payload.files, job_id=payload.uuid
        )
    except InvalidInput as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return BuildAccepted(uuid=submitted.job_id, program_name=submitted.program_name)


@router.get("/build/status/{uuid}")
async def build_status(
    uuid: str,
    orchestrator: BuildOrchestrator = Depends(get_orchestrator),
):
    info = await orchestrator.get_status(uuid)
    if info is None:
        return BuildNotFound(uuid=uuid)
    return info


@router.get("/build/logs/{uuid}")
async def build_logs(
    uuid: str,
    orchestrator: BuildOrchestrator = Depends(get_orchestrator),
):
    if await orchestrator.get_status(uuid) is None:
        raise HTTPException(status_code=404, detail="build not found")
    return StreamingResponse(
        orchestrator.stream_logs(uuid), media_type="text/plain; charset=utf-8"
    )


@router.get("/deploy/{uuid}/{program_name}")
async def deploy(
    uuid: str,
    program_name: str,
    orchestrator: BuildOrchestrator = Depends(get_orchestrator),
):
    try:
        binary = await orchestrator.get_artifact(uuid, program_name)
    except NotBuilt as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(content=binary, media_type="application/octet-stream")


app = create_app()
