from .config import (
    EngineConfig,
    Candidate,
    CandidateList,
    InputState,
    InputEventType,
    InputEvent,
    DictionaryEntry,
    DictionaryStats,
    SessionSnapshot,
    load_config,
)
from .errors import IMEError, InitializationError, StorageOpenError, SchemaError, ModelLoadError
from .segmenter import PinyinSegmenter, SegmentResult, PINYIN_SYLLABLES
from .store import CandidateStore, SQLiteCandidateStore, calculate_score
from .language_model import LanguageModel, TorchLanguageModel, CharDecoderLM, CharVocab, LMConfig
from .predictor import PredictionEngine
from .core import InputSessionController, create_session
from .logging import setup_logging, get_logger, get_api_logger, get_engine_logger

__all__ = [
    # 会话
    'InputSessionController',
    'create_session',
    # 配置与类型
    'EngineConfig',
    'Candidate',
    'CandidateList',
    'InputState',
    'InputEventType',
    'InputEvent',
    'DictionaryEntry',
    'DictionaryStats',
    'SessionSnapshot',
    'load_config',
    # 异常
    'IMEError',
    'InitializationError',
    'StorageOpenError',
    'SchemaError',
    'ModelLoadError',
    # 切分
    'PinyinSegmenter',
    'SegmentResult',
    'PINYIN_SYLLABLES',
    # 词库
    'CandidateStore',
    'SQLiteCandidateStore',
    'calculate_score',
    # 预测
    'LanguageModel',
    'TorchLanguageModel',
    'CharDecoderLM',
    'CharVocab',
    'LMConfig',
    'PredictionEngine',
    # 日志
    'setup_logging',
    'get_logger',
    'get_api_logger',
    'get_engine_logger',
]
