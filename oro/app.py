import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from .errors import StorageError, TaskError, ValidationFailed
from .gateway import TaskGateway
from .models import ApiError, InputTask, OutputTask, UpdateTask

logger = logging.getLogger(__name__)

API_PREFIX = "/oro/v1"

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
}

HTTP_ERROR_CODES = {404: "not_found", 405: "method_not_allowed"}


# ---------- Envelope ----------
def success(data: Any, status_code: int = 200) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": True, "data": data})


def failure(code: str, message: str, status_code: int, headers: dict | None = None) -> JSONResponse:
    error = ApiError(code=code, message=message)
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": error.model_dump()},
        headers=headers,
    )


def get_gateway(request: Request) -> TaskGateway:
    return request.app.state.gateway


# ---------- Routes ----------
router = APIRouter(prefix=API_PREFIX)


@router.post("/tasks", status_code=201)
def create_task(task: InputTask, gateway: TaskGateway = Depends(get_gateway)) -> JSONResponse:
    new_task = gateway.insert(task)
    return success(OutputTask.from_db(new_task).to_json(), status_code=201)


@router.get("/tasks", status_code=200)
def get_tasks(gateway: TaskGateway = Depends(get_gateway)) -> JSONResponse:
    return success([OutputTask.from_db(task).to_json() for task in gateway.find_all()])


@router.get("/tasks/{task_id}", status_code=200)
def get_task(task_id: str, gateway: TaskGateway = Depends(get_gateway)) -> JSONResponse:
    return success(OutputTask.from_db(gateway.find_by_id(task_id)).to_json())


@router.put("/tasks/{task_id}", status_code=200)
def update_task(task_id: str, task: UpdateTask, gateway: TaskGateway = Depends(get_gateway)) -> JSONResponse:
    updated = gateway.update(task_id, task.changes())
    return success(OutputTask.from_db(updated).to_json())


@router.delete("/tasks/{task_id}", status_code=200)
def delete_task(task_id: str, gateway: TaskGateway = Depends(get_gateway)) -> JSONResponse:
    gateway.soft_delete(task_id)
    return success({"id": task_id, "deleted": True})


@router.post("/tasks/{task_id}/complete", status_code=200)
def toggle_task_completion(task_id: str, gateway: TaskGateway = Depends(get_gateway)) -> JSONResponse:
    return success(OutputTask.from_db(gateway.toggle(task_id, "complete")).to_json())


@router.post("/tasks/{task_id}/important", status_code=200)
def toggle_task_importance(task_id: str, gateway: TaskGateway = Depends(get_gateway)) -> JSONResponse:
    return success(OutputTask.from_db(gateway.toggle(task_id, "important")).to_json())


# ---------- Error handlers ----------
def handle_task_error(request: Request, exc: TaskError) -> JSONResponse:
    if exc.status_code >= 500:
        return failure(exc.code, "Internal server error", exc.status_code)
    return failure(exc.code, exc.message, exc.status_code)


def validation_failure(exc: RequestValidationError) -> ValidationFailed:
    errors = exc.errors()
    if not errors:
        return ValidationFailed("Invalid request")
    first = errors[0]
    loc = first.get("loc", ())
    if first.get("type") == "json_invalid":
        # loc carries the byte offset of the parse error, not a field
        loc = [part for part in loc if not isinstance(part, int)]
    field = ".".join(str(part) for part in loc if part != "body")
    return ValidationFailed(f"{field}: {first['msg']}" if field else first["msg"])


def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return handle_task_error(request, validation_failure(exc))


def handle_http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code = HTTP_ERROR_CODES.get(exc.status_code, "http_error")
    return failure(code, str(exc.detail), exc.status_code, headers=getattr(exc, "headers", None))


def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    # Rendered outside the middleware stack, so CORS headers are set here.
    return failure("internal", "Internal server error", 500, headers=CORS_HEADERS)


# ---------- Application ----------
async def cors_middleware(request: Request, call_next) -> Response:
    if request.method == "OPTIONS":
        return Response(status_code=200, headers=CORS_HEADERS)
    response = await call_next(request)
    for name, value in CORS_HEADERS.items():
        response.headers[name] = value
    return response


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    try:
        app.state.gateway.init_schema()
    except StorageError:
        logger.critical("Failed to initialize the task store, shutting down")
        raise
    yield


def create_app(gateway: TaskGateway) -> FastAPI:
    """Build the API around an already constructed gateway.

    The task schema is created on startup; a store that cannot be reached
    aborts startup.
    """
    app = FastAPI(title="Oro Tasks", version="1.0.0", lifespan=lifespan)
    app.state.gateway = gateway

    @app.get("/", status_code=200)
    def read_root() -> JSONResponse:
        return success({"message": "Server is running!"})

    app.include_router(router)

    app.add_exception_handler(TaskError, handle_task_error)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(StarletteHTTPException, handle_http_error)
    app.add_exception_handler(Exception, handle_unexpected_error)
    app.middleware("http")(cors_middleware)

    return app
