import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from pomotrack.database import SessionLocal, init_db
from pomotrack.errors import (
    NoActiveSessionError,
    NotFoundError,
    PersistenceError,
    ReauthenticationRequiredError,
    ValidationError,
)
from pomotrack.logging_setup import configure_logging
from pomotrack.routers import api
from pomotrack.services.scheduler import AsyncioTickScheduler
from pomotrack.services.timers import TimerRegistry
from pomotrack.stores import make_interval_feed, make_session_feed
from pomotrack.version import get_version

logger = logging.getLogger("pomotrack.main")


def _error(status_code: int, exc: Exception, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": str(exc), **extra})


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ValidationError)
    async def validation_error(request: Request, exc: ValidationError):
        return _error(422, exc)

    @app.exception_handler(NoActiveSessionError)
    async def no_active_session(request: Request, exc: NoActiveSessionError):
        return _error(409, exc)

    @app.exception_handler(NotFoundError)
    async def not_found(request: Request, exc: NotFoundError):
        return _error(404, exc)

    @app.exception_handler(ReauthenticationRequiredError)
    async def reauthentication_required(request: Request, exc: ReauthenticationRequiredError):
        return _error(401, exc, code=exc.code)

    @app.exception_handler(PersistenceError)
    async def persistence_error(request: Request, exc: PersistenceError):
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
        return _error(503, exc)


def create_app(session_factory=None, scheduler_factory=AsyncioTickScheduler, dispatch=None) -> FastAPI:
    session_factory = session_factory or SessionLocal

    app = FastAPI(
        title="Pomotrack",
        description="Pomodoro timer with session tracking",
        version=get_version(),
    )
    app.state.session_feed = make_session_feed(session_factory)
    app.state.interval_feed = make_interval_feed(session_factory)
    app.state.timers = TimerRegistry(
        session_factory,
        session_feed=app.state.session_feed,
        interval_feed=app.state.interval_feed,
        scheduler_factory=scheduler_factory,
        dispatch=dispatch,
    )

    app.include_router(api.router)
    register_exception_handlers(app)

    @app.on_event("shutdown")
    def shutdown_event():
        app.state.timers.close_all()

    return app


app = create_app()


@app.on_event("startup")
def startup_event():
    configure_logging()
    init_db()


if __name__ == "__main__":
    import uvicorn
    from pomotrack.config import HOST, PORT

    uvicorn.run("main:app", host=HOST, port=PORT, reload=True)
