import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from database import Base, engine, get_settings
from core.context import build_game_context
from api import players, rounds, admin
from api.errors import error_detail

import models  # noqa: F401  確保所有資料表都註冊到 Base.metadata

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    logger.info("Nexus Gamble API started, tables ready")
    yield
    # 關閉前取消所有還在倒數的計時器
    app.state.game_context.timers.shutdown()


app = FastAPI(
    title="Nexus Gamble API",
    description="Backend API for a three-round credit wagering game",
    version="1.0.0",
    lifespan=lifespan
)

# Override、結果決定者、計時器：整個 process 共用一份
app.state.game_context = build_game_context()

origins = [o.strip() for o in get_settings().cors_origins.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(players.router)
app.include_router(rounds.router)
app.include_router(admin.router)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    # 型別錯誤也以 ValidationError 回報，和領域驗證一致
    fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in exc.errors())
    return JSONResponse(
        status_code=400,
        content={"detail": error_detail("ValidationError", f"Invalid request fields: {fields}")}
    )


@app.get("/")
def root():
    return {"message": "Nexus Gamble API", "status": "ok"}


@app.get("/health")
def health():
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
