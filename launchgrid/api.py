"""HTTP surface: execute trigger, review actions and the extension protocol."""

from __future__ import annotations

import hmac
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional, Tuple

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from .constants import DEFAULT_JOB_POLL_LIMIT, MAX_JOB_POLL_LIMIT
from .contracts import EngagementMetrics
from .errors import AuthenticationError, LaunchGridError, ValidationError, format_error_response
from .runtime import Runtime
from .security.context import ServiceContext

logger = logging.getLogger(__name__)


# --- Request models ---

class ExtensionResultRequest(BaseModel):
    """Result report from the extension.

    ``result`` is either the output itself or a ``{success, data, error}``
    envelope.
    """

    model_config = ConfigDict(populate_by_name=True)

    task_id: str = Field(alias="taskId")
    result: Dict[str, Any] = Field(default_factory=dict)
    success: Optional[bool] = None
    error: Optional[str] = None

    def unpack(self) -> Tuple[Dict[str, Any], bool, Optional[str]]:
        result = self.result
        if "success" in result and ("data" in result or "error" in result):
            return dict(result.get("data") or {}), bool(result["success"]), result.get("error")
        success = True if self.success is None else self.success
        return dict(result), success, self.error


class ExtensionProgressRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    task_id: str = Field(alias="taskId")
    progress: Dict[str, Any] = Field(default_factory=dict)


class MetricsReportRequest(BaseModel):
    metrics: EngagementMetrics


class RejectRequest(BaseModel):
    reason: Optional[str] = None


class AddStepRequest(BaseModel):
    type: str
    config: Dict[str, Any] = Field(default_factory=dict)
    position: Optional[int] = None
    dependency_ids: List[str] = Field(default_factory=list)


class ReorderStepsRequest(BaseModel):
    step_ids: List[str]


class CreateJobRequest(BaseModel):
    project_id: str
    target_url: str
    source_task_id: Optional[str] = None
    duration_days: Optional[int] = None


# --- Dependencies ---

def get_runtime(request: Request) -> Runtime:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        runtime = request.app.state.runtime = Runtime()
    return runtime


def tenant_context(
    runtime: Runtime = Depends(get_runtime),
    x_user_id: Optional[str] = Header(default=None),
    x_organization_id: Optional[str] = Header(default=None),
    x_request_id: Optional[str] = Header(default=None),
) -> ServiceContext:
    return runtime.context(x_user_id, x_organization_id, x_request_id)


def extension_context(
    runtime: Runtime = Depends(get_runtime),
    x_api_key: Optional[str] = Header(default=None),
) -> ServiceContext:
    expected = runtime.config.extension.api_key
    if not expected or not x_api_key or not hmac.compare_digest(x_api_key, expected):
        raise AuthenticationError("Invalid extension API key")
    return runtime.system_context()


def _ok(data: Any) -> Dict[str, Any]:
    return {"success": True, "data": jsonable_encoder(data)}


# --- Application ---

def create_app(runtime: Optional[Runtime] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        active = getattr(app.state, "runtime", None)
        if active is not None:
            await active.close()

    app = FastAPI(title="LaunchGrid", version="0.1.0", lifespan=lifespan)
    if runtime is not None:
        app.state.runtime = runtime

    @app.exception_handler(LaunchGridError)
    async def launchgrid_error_handler(request: Request, exc: LaunchGridError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.code} {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=format_error_response(exc))

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        error = ValidationError(
            "Invalid request", details={"errors": jsonable_encoder(exc.errors())}
        )
        return JSONResponse(status_code=error.status_code, content=format_error_response(error))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(status_code=500, content=format_error_response(exc))

    # --- Workflow execution ---

    @app.post("/api/v1/workflows/{workflow_id}/execute")
    async def execute_workflow(
        workflow_id: str,
        rerun_step_id: Optional[str] = None,
        runtime: Runtime = Depends(get_runtime),
        ctx: ServiceContext = Depends(tenant_context),
    ) -> Dict[str, Any]:
        result = await runtime.runner(ctx).execute(workflow_id, rerun_step_id=rerun_step_id)
        return _ok(result.model_dump(exclude_none=True))

    @app.get("/api/v1/workflows/{workflow_id}/state")
    async def workflow_state(
        workflow_id: str,
        runtime: Runtime = Depends(get_runtime),
        ctx: ServiceContext = Depends(tenant_context),
    ) -> Dict[str, Any]:
        return _ok(await runtime.runner(ctx).execution_state(workflow_id))

    @app.post("/api/v1/tasks/{task_id}/approve")
    async def approve_task(
        task_id: str,
        runtime: Runtime = Depends(get_runtime),
        ctx: ServiceContext = Depends(tenant_context),
    ) -> Dict[str, Any]:
        return _ok(await runtime.runner(ctx).approve_task(task_id))

    @app.post("/api/v1/tasks/{task_id}/reject")
    async def reject_task(
        task_id: str,
        body: Optional[RejectRequest] = None,
        runtime: Runtime = Depends(get_runtime),
        ctx: ServiceContext = Depends(tenant_context),
    ) -> Dict[str, Any]:
        reason = body.reason if body else None
        return _ok(await runtime.runner(ctx).reject_task(task_id, reason))

    # --- Step editing ---

    @app.post("/api/v1/workflows/{workflow_id}/steps")
    async def add_step(
        workflow_id: str,
        body: AddStepRequest,
        runtime: Runtime = Depends(get_runtime),
        ctx: ServiceContext = Depends(tenant_context),
    ) -> Dict[str, Any]:
        step = await runtime.steps(ctx).add_step(
            workflow_id,
            body.type,
            config=body.config,
            position=body.position,
            dependency_ids=body.dependency_ids,
        )
        return _ok(step)

    @app.put("/api/v1/workflows/{workflow_id}/steps/order")
    async def reorder_steps(
        workflow_id: str,
        body: ReorderStepsRequest,
        runtime: Runtime = Depends(get_runtime),
        ctx: ServiceContext = Depends(tenant_context),
    ) -> Dict[str, Any]:
        return _ok(await runtime.steps(ctx).reorder_steps(workflow_id, body.step_ids))

    @app.delete("/api/v1/steps/{step_id}")
    async def remove_step(
        step_id: str,
        runtime: Runtime = Depends(get_runtime),
        ctx: ServiceContext = Depends(tenant_context),
    ) -> Dict[str, Any]:
        await runtime.steps(ctx).remove_step(step_id)
        return _ok({"step_id": step_id})

    # --- Engagement jobs ---

    @app.post("/api/v1/jobs")
    async def create_job(
        body: CreateJobRequest,
        runtime: Runtime = Depends(get_runtime),
        ctx: ServiceContext = Depends(tenant_context),
    ) -> Dict[str, Any]:
        job = await runtime.engagement(ctx).create_job(
            body.project_id, body.target_url, body.source_task_id, body.duration_days
        )
        return _ok(job)

    @app.get("/api/v1/projects/{project_id}/jobs")
    async def list_jobs(
        project_id: str,
        runtime: Runtime = Depends(get_runtime),
        ctx: ServiceContext = Depends(tenant_context),
    ) -> Dict[str, Any]:
        return _ok(await runtime.engagement(ctx).list_jobs(project_id))

    @app.post("/api/v1/jobs/{job_id}/trigger")
    async def trigger_job(
        job_id: str,
        runtime: Runtime = Depends(get_runtime),
        ctx: ServiceContext = Depends(tenant_context),
    ) -> Dict[str, Any]:
        return _ok(await runtime.engagement(ctx).trigger_now(job_id))

    @app.post("/api/v1/jobs/{job_id}/stop")
    async def stop_job(
        job_id: str,
        runtime: Runtime = Depends(get_runtime),
        ctx: ServiceContext = Depends(tenant_context),
    ) -> Dict[str, Any]:
        return _ok(await runtime.engagement(ctx).stop_job(job_id))

    # --- Browser extension protocol ---

    @app.get("/api/v1/extension/tasks")
    async def poll_extension_task(
        runtime: Runtime = Depends(get_runtime),
        ctx: ServiceContext = Depends(extension_context),
    ) -> Dict[str, Any]:
        task = await runtime.bridge(ctx).poll_task()
        return {"task": task.model_dump(by_alias=True) if task else None}

    @app.post("/api/v1/extension/tasks")
    async def submit_extension_result(
        body: ExtensionResultRequest,
        runtime: Runtime = Depends(get_runtime),
        ctx: ServiceContext = Depends(extension_context),
    ) -> Dict[str, Any]:
        data, success, error = body.unpack()
        task = await runtime.bridge(ctx).submit_result(
            body.task_id, data, success=success, error=error
        )
        return _ok({"task_id": task.id, "status": task.status.value})

    @app.patch("/api/v1/extension/tasks")
    async def report_extension_progress(
        body: ExtensionProgressRequest,
        runtime: Runtime = Depends(get_runtime),
        ctx: ServiceContext = Depends(extension_context),
    ) -> Dict[str, Any]:
        task = await runtime.bridge(ctx).update_progress(body.task_id, body.progress)
        return _ok({"task_id": task.id, "status": task.status.value})

    @app.get("/api/v1/extension/jobs/poll")
    async def poll_engagement_jobs(
        limit: int = Query(default=DEFAULT_JOB_POLL_LIMIT, ge=1, le=MAX_JOB_POLL_LIMIT),
        runtime: Runtime = Depends(get_runtime),
        ctx: ServiceContext = Depends(extension_context),
    ) -> Dict[str, Any]:
        jobs = await runtime.bridge(ctx).poll_jobs(limit)
        return {"jobs": jsonable_encoder(jobs)}

    @app.post("/api/v1/extension/jobs/{job_id}/result")
    async def report_job_metrics(
        job_id: str,
        body: MetricsReportRequest,
        runtime: Runtime = Depends(get_runtime),
        ctx: ServiceContext = Depends(extension_context),
    ) -> Dict[str, Any]:
        job = await runtime.bridge(ctx).report_job_metrics(job_id, body.metrics)
        return _ok(job)

    return app
