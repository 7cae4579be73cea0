"""
pinyin_ime - 拼音输入法核心引擎

拼音切分、词频词库、AI 预测与输入会话状态机
"""

__version__ = "0.1.0"

from pinyin_ime.engine import (
    InputSessionController,
    create_session,
    EngineConfig,
    Candidate,
    InputState,
    InputEventType,
    InputEvent,
    load_config,
    IMEError,
    InitializationError,
    PinyinSegmenter,
    SQLiteCandidateStore,
    PredictionEngine,
    TorchLanguageModel,
)

__all__ = [
    "__version__",
    "InputSessionController",
    "create_session",
    "EngineConfig",
    "Candidate",
    "InputState",
    "InputEventType",
    "InputEvent",
    "load_config",
    "IMEError",
    "InitializationError",
    "PinyinSegmenter",
    "SQLiteCandidateStore",
    "PredictionEngine",
    "TorchLanguageModel",
]
