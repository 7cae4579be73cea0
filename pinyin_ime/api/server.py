"""
pinyin_ime FastAPI 服务

把单个输入会话暴露为 HTTP 接口，供调试用的宿主前端转发按键事件。
每个事件响应都带回该事件期间按顺序发出的通知。
"""

import os
import threading
import time
import uuid
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from pinyin_ime.engine import (
    Candidate,
    InputEvent,
    InputEventType,
    InputSessionController,
    InputState,
    SQLiteCandidateStore,
    create_session,
    get_api_logger,
    load_config,
)

logger = get_api_logger()


# ===== 请求/响应模型 =====

class KeyRequest(BaseModel):
    """按键事件"""
    key_code: int = Field(0, description="按键码，字母为其 ASCII 码")
    data: str = Field("", description="按键字符，key_code 为 0 时使用")


class SelectRequest(BaseModel):
    """候选选择（0 起始）"""
    index: int = Field(..., description="候选序号")


class CommitRequest(BaseModel):
    """提交文本，为空时提交当前拼音"""
    text: str = ""


class WordRequest(BaseModel):
    """用户词"""
    word: str = Field(..., min_length=1)
    pinyin: str = Field(..., min_length=1, description="以空格分隔的拼音")
    frequency: int = Field(1, ge=0)


class CandidateItem(BaseModel):
    """候选项"""
    text: str
    pinyin: str
    score: float
    frequency: int
    is_prediction: bool


class Notification(BaseModel):
    """会话通知"""
    kind: str                      # candidates / commit / state
    candidates: Optional[List[CandidateItem]] = None
    text: Optional[str] = None
    state: Optional[str] = None


class SessionResponse(BaseModel):
    """会话状态"""
    accepted: bool = True
    composition: str
    state: str
    candidates: List[CandidateItem]
    notifications: List[Notification] = []


class HealthResponse(BaseModel):
    """健康检查响应"""
    status: str
    version: str
    prediction: bool


def _candidate_item(c: Candidate) -> CandidateItem:
    return CandidateItem(
        text=c.text, pinyin=c.pinyin, score=c.score, frequency=c.frequency, is_prediction=c.is_prediction
    )


class NotificationRecorder:
    """收集一次请求期间的会话通知"""

    def __init__(self):
        self.items: List[Notification] = []

    def attach(self, session: InputSessionController):
        session.add_candidate_listener(self.on_candidates)
        session.add_commit_listener(self.on_commit)
        session.add_state_listener(self.on_state)

    def on_candidates(self, candidates):
        self.items.append(Notification(kind="candidates", candidates=[_candidate_item(c) for c in candidates]))

    def on_commit(self, text: str):
        self.items.append(Notification(kind="commit", text=text))

    def on_state(self, state: InputState):
        self.items.append(Notification(kind="state", state=state.value))

    def drain(self) -> List[Notification]:
        items, self.items = self.items, []
        return items


# ===== 全局会话 =====
session: Optional[InputSessionController] = None
recorder = NotificationRecorder()
# 会话与词库连接非线程安全，路由在线程池中运行，逐个事件串行处理
session_lock = threading.Lock()


def _build_config():
    overrides = {}
    if os.getenv("PINYIN_IME_DICTIONARY_PATH"):
        overrides["dictionary_path"] = os.environ["PINYIN_IME_DICTIONARY_PATH"]
    if os.getenv("PINYIN_IME_MODEL_PATH"):
        overrides["model_path"] = os.environ["PINYIN_IME_MODEL_PATH"]
    if os.getenv("PINYIN_IME_ENABLE_PREDICTION"):
        overrides["enable_prediction"] = os.environ["PINYIN_IME_ENABLE_PREDICTION"].lower() in {"1", "true", "yes", "on"}
    return load_config(os.getenv("PINYIN_IME_CONFIG"), **overrides)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    global session

    logger.info("=" * 50)
    logger.info("pinyin_ime API 服务启动")

    session = create_session(_build_config())
    recorder.drain()
    recorder.attach(session)

    logger.info(f"会话初始化完成，词库: {session.config.dictionary_path}")
    logger.info("=" * 50)

    yield

    logger.info("正在关闭会话...")
    with session_lock:
        session.shutdown()
        session = None
        recorder.drain()
    logger.info("pinyin_ime API 服务已停止")


app = FastAPI(
    title="pinyin_ime API",
    description="拼音输入法核心引擎会话接口",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """请求日志"""
    request_id = str(uuid.uuid4())[:8]
    start_time = time.perf_counter()
    logger.info(f"[{request_id}] --> {request.method} {request.url.path}")

    try:
        response = await call_next(request)
    except Exception as e:
        elapsed_ms = (time.perf_counter() - start_time) * 1000
        logger.error(f"[{request_id}] <-- ERROR | {elapsed_ms:.2f}ms | {type(e).__name__}: {e}")
        raise

    elapsed_ms = (time.perf_counter() - start_time) * 1000
    level = "info" if response.status_code < 400 else "warning" if response.status_code < 500 else "error"
    getattr(logger, level)(f"[{request_id}] <-- {response.status_code} | {elapsed_ms:.2f}ms")
    response.headers["X-Request-ID"] = request_id
    return response


def _require_session() -> InputSessionController:
    if session is None:
        logger.error("会话未就绪，拒绝请求")
        raise HTTPException(status_code=503, detail="会话未就绪")
    return session


def _session_response(s: InputSessionController, accepted: bool = True) -> SessionResponse:
    return SessionResponse(
        accepted=accepted,
        composition=s.get_composition(),
        state=s.get_state().value,
        candidates=[_candidate_item(c) for c in s.get_candidates()],
        notifications=recorder.drain(),
    )


def _dispatch(event: InputEvent) -> SessionResponse:
    with session_lock:
        s = _require_session()
        accepted = s.process_input(event)
        return _session_response(s, accepted)


def _require_sqlite_store() -> SQLiteCandidateStore:
    store = _require_session().store
    if not isinstance(store, SQLiteCandidateStore):
        raise HTTPException(status_code=501, detail="当前词库不支持用户词")
    return store


# ===== API 路由 =====

@app.get("/health", response_model=HealthResponse)
def health_check():
    from pinyin_ime import __version__
    with session_lock:
        return HealthResponse(
            status="healthy" if session else "not_ready",
            version=__version__,
            prediction=bool(session and session.get_stats()["prediction_available"]),
        )


@app.get("/session", response_model=SessionResponse)
def get_session():
    with session_lock:
        return _session_response(_require_session())


@app.post("/session/key", response_model=SessionResponse)
def press_key(request: KeyRequest):
    if not request.key_code and len(request.data) != 1:
        raise HTTPException(status_code=400, detail="需要 key_code 或单个字符")
    return _dispatch(InputEvent(InputEventType.KEY_PRESS, request.data, request.key_code))


@app.post("/session/select", response_model=SessionResponse)
def select_candidate(request: SelectRequest):
    return _dispatch(InputEvent(InputEventType.CANDIDATE_SELECT, str(request.index)))


@app.post("/session/commit", response_model=SessionResponse)
def commit_text(request: CommitRequest):
    return _dispatch(InputEvent(InputEventType.COMMIT_TEXT, request.text))


@app.post("/session/clear", response_model=SessionResponse)
def clear_composition():
    return _dispatch(InputEvent(InputEventType.CLEAR_COMPOSITION))


@app.get("/stats")
def get_stats():
    with session_lock:
        s = _require_session()
        stats = s.get_stats()
        if isinstance(s.store, SQLiteCandidateStore):
            dictionary = s.store.get_statistics()
            stats["dictionary"] = {
                "total_words": dictionary.total_words,
                "user_words": dictionary.user_words,
                "system_words": dictionary.system_words,
                "avg_frequency": dictionary.avg_frequency,
            }
        return stats


@app.post("/dictionary/words")
def add_word(request: WordRequest):
    with session_lock:
        store = _require_sqlite_store()
        if not store.add_user_word(request.word, request.pinyin, request.frequency):
            raise HTTPException(status_code=500, detail="添加用户词失败")
    return {"word": request.word, "pinyin": request.pinyin, "frequency": request.frequency}


@app.delete("/dictionary/words")
def remove_word(word: str, pinyin: str):
    with session_lock:
        removed = _require_sqlite_store().remove_user_word(word, pinyin)
    return {"word": word, "pinyin": pinyin, "ok": removed}


# ===== 启动入口 =====

def main():
    import uvicorn

    host = os.getenv("HOST", "127.0.0.1")
    port = int(os.getenv("PORT", "3000"))
    log_level = os.getenv("LOG_LEVEL", "info").lower()

    logger.info(f"启动 pinyin_ime API 服务: http://{host}:{port}")
    logger.info(f"API 文档: http://{host}:{port}/docs")

    uvicorn.run(
        "pinyin_ime.api.server:app",
        host=host,
        port=port,
        reload=False,
        workers=1,
        log_level=log_level,
    )


if __name__ == "__main__":
    main()
