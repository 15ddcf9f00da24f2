from contextlib import asynccontextmanager
import logging
import time

from fastapi import FastAPI, Request

from schoolhub.config import settings
from schoolhub.db import Base, SessionLocal, engine
from schoolhub.routers import auth, classes, news_posts, public_news, students
from schoolhub.services.bootstrap_service import run_bootstrap
from schoolhub.services.observability_counters import observability_summary

logging.basicConfig(
    level=getattr(logging, (settings.log_level or 'INFO').upper(), logging.INFO),
    format='%(asctime)s %(levelname)s %(name)s %(message)s',
)


@asynccontextmanager
async def lifespan(_: FastAPI):
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        run_bootstrap(db)
    finally:
        db.close()
    yield


app = FastAPI(title=settings.app_name, version='0.1.0', lifespan=lifespan)


@app.middleware('http')
async def slow_request_logger(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - started) * 1000.0
    if duration_ms >= settings.metrics_slow_ms:
        logging.getLogger('schoolhub.request').info(
            'request_slow path=%s method=%s status_code=%s duration_ms=%.2f',
            request.url.path,
            request.method,
            response.status_code,
            duration_ms,
        )
    return response


app.include_router(auth.router)
app.include_router(news_posts.router)
app.include_router(public_news.router)
app.include_router(classes.router)
app.include_router(students.router)


@app.get('/')
def root():
    return {'app': settings.app_name, 'status': 'ok'}


@app.get('/health')
def healthcheck():
    return {'status': 'ok', 'env': settings.app_env, 'events_24h': observability_summary(window_hours=24)}
