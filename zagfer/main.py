import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlmodel import Session

from zagfer.db import create_db_and_tables, engine
from zagfer.errors import ZagferError
from zagfer.routers import auth, checkouts, dashboard, history, tools, users
from zagfer.seed import load_initial_data
from zagfer.settings import get_settings
from zagfer.store import SqlEntityStore

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("zagfer")


@asynccontextmanager
async def lifespan(app: FastAPI):
    create_db_and_tables()  # ✅ 启动阶段建表
    if settings.use_initial_data:
        with Session(engine) as session:
            try:
                load_initial_data(SqlEntityStore(session))
            except ZagferError as e:
                # 初始数据失败不阻止服务启动
                logger.error("initial data not loaded: %s", e.message)
    yield
    logger.info("ZAGFER stopped")


app = FastAPI(title="ZAGFER - Controle de Ferramentas", lifespan=lifespan)

app.include_router(auth.router)
app.include_router(tools.router)
app.include_router(users.router)
app.include_router(checkouts.router)
app.include_router(history.router)
app.include_router(dashboard.router)


@app.get("/health")
def health():
    return {"ok": True}


@app.exception_handler(ZagferError)
async def domain_exception_handler(request: Request, exc: ZagferError):
    return JSONResponse(status_code=exc.http_status, content={"detail": exc.to_detail()})


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content={"code": "VALIDATION_ERROR", "message": "Parâmetros inválidos", "errors": jsonable_encoder(exc.errors())},
    )
