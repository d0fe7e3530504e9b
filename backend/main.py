import logging
import math
import os
import sys
from pathlib import Path

import psycopg2
from dotenv import load_dotenv
from fastapi import FastAPI

_project_root = Path(__file__).resolve().parents[1]
if str(_project_root) not in sys.path:
    sys.path.append(str(_project_root))

try:
    from backend import app_context
    from backend.app.routes.alerts import router as alerts_router
    from backend.app.routes.renewals import router as renewals_router
    from backend.app.routes.shipping import router as shipping_router
    from backend.app.routes.webhooks import router as webhooks_router
    from backend.app.services.subscriptions import get_engine, get_engine_config
    from backend.app.subscriptions.postgres import PostgresRecordStore
except ModuleNotFoundError as exc:
    if exc.name != "backend":
        raise
    import app_context  # type: ignore[no-redef]
    from app.routes.alerts import router as alerts_router  # type: ignore[no-redef]
    from app.routes.renewals import router as renewals_router  # type: ignore[no-redef]
    from app.routes.shipping import router as shipping_router  # type: ignore[no-redef]
    from app.routes.webhooks import router as webhooks_router  # type: ignore[no-redef]
    from app.services.subscriptions import get_engine, get_engine_config  # type: ignore[no-redef]
    from app.subscriptions.postgres import PostgresRecordStore  # type: ignore[no-redef]


load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("subscriptions")


def _parse_connect_timeout(raw_value: str) -> int:
    try:
        timeout = float(raw_value)
    except ValueError as exc:
        raise ValueError("DB_CONNECT_TIMEOUT must be a number") from exc
    if timeout < 0:
        raise ValueError("DB_CONNECT_TIMEOUT must be non-negative")
    return int(math.ceil(timeout))


DB_CFG = dict(
    host=os.getenv("DB_HOST", "127.0.0.1"),
    port=int(os.getenv("DB_PORT", "5432")),
    dbname=os.getenv("DB_NAME", "magazine_subscriptions"),
    user=os.getenv("DB_USER", "magazine_user"),
    password=os.getenv("DB_PASSWORD", "magazine_pass"),
    connect_timeout=_parse_connect_timeout(os.getenv("DB_CONNECT_TIMEOUT", "5")),
)


def get_conn():
    return psycopg2.connect(**DB_CFG)


app_context.configure(get_conn=get_conn)

app = FastAPI(title="Magazine Subscriptions API")

app.include_router(webhooks_router)
app.include_router(alerts_router)
app.include_router(renewals_router)
app.include_router(shipping_router)


@app.on_event("startup")
def prepare_store() -> None:
    engine = get_engine()
    if isinstance(engine.record_store, PostgresRecordStore):
        engine.record_store.ensure_schema()
        logger.info("Record store schema ensured on %s:%s/%s", DB_CFG["host"], DB_CFG["port"], DB_CFG["dbname"])


@app.get("/api/healthz")
def healthz():
    return {"ok": True, "storeBackend": get_engine_config().store_backend}
