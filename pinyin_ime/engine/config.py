"""
引擎配置与核心数据类型
"""

import os
import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

import orjson


# 特殊按键码
KEY_BACKSPACE = 8
KEY_ENTER = 13
KEY_ESCAPE = 27


@dataclass(frozen=True)
class EngineConfig:
    """引擎配置（会话内不可变，通过 update_config 整体替换）"""

    # 路径
    dictionary_path: str = "data/dictionary.db"
    model_path: str = "models/lm/model.pt"
    vocab_path: Optional[str] = None  # 默认取模型同目录下的 vocab.json

    # 候选数量
    max_candidates: int = 9

    # 模块开关
    enable_prediction: bool = True
    enable_learning: bool = True

    # AI 候选最低得分
    prediction_threshold: float = 0.5

    # 生成参数（原样透传给语言模型）
    temperature: float = 0.7
    top_p: float = 0.9
    top_k: int = 40

    # 拼音缓冲区上限，限制切分回溯的最坏代价
    max_buffer_length: int = 40

    def __post_init__(self):
        if self.max_candidates < 1:
            raise ValueError(f"max_candidates 必须 >= 1: {self.max_candidates}")
        if not 0.0 <= self.prediction_threshold <= 1.0:
            raise ValueError(f"prediction_threshold 必须在 [0, 1] 内: {self.prediction_threshold}")
        if self.max_buffer_length < 1:
            raise ValueError(f"max_buffer_length 必须 >= 1: {self.max_buffer_length}")

    @property
    def resolved_vocab_path(self) -> str:
        if self.vocab_path:
            return self.vocab_path
        return os.path.join(os.path.dirname(self.model_path), "vocab.json")

    def replace(self, **changes) -> "EngineConfig":
        """返回修改了部分字段的新配置"""
        return dataclasses.replace(self, **changes)


@dataclass
class Candidate:
    """候选词"""
    text: str                    # 候选文本
    pinyin: str                  # 拼音（多音节以空格分隔）
    score: float = 0.0           # 综合得分（越高越好，非归一化）
    frequency: int = 0           # 使用频率，AI 候选为 0
    is_prediction: bool = False  # 是否来自 AI 预测


CandidateList = List[Candidate]


class InputState(Enum):
    """输入状态"""
    IDLE = "idle"
    COMPOSING = "composing"
    SELECTING = "selecting"


class InputEventType(Enum):
    """输入事件类型"""
    KEY_PRESS = "key_press"
    CANDIDATE_SELECT = "candidate_select"
    COMMIT_TEXT = "commit_text"
    CLEAR_COMPOSITION = "clear_composition"


@dataclass
class InputEvent:
    """输入事件（修饰键仅透传，核心逻辑不使用）"""
    type: InputEventType
    data: str = ""
    key_code: int = 0
    ctrl: bool = False
    shift: bool = False
    alt: bool = False

    @classmethod
    def key(cls, ch: str) -> "InputEvent":
        """由单个字符构造按键事件"""
        return cls(InputEventType.KEY_PRESS, ch, ord(ch))


@dataclass
class DictionaryEntry:
    """词库条目"""
    word: str
    pinyin: str
    frequency: int
    is_user_word: bool = False
    created_at: str = ""
    updated_at: str = ""


@dataclass
class DictionaryStats:
    """词库统计"""
    total_words: int = 0
    user_words: int = 0
    system_words: int = 0
    avg_frequency: float = 0.0

    def __str__(self):
        return (
            "Dictionary Statistics:\n"
            f"  Total words: {self.total_words}\n"
            f"  User words: {self.user_words}\n"
            f"  System words: {self.system_words}\n"
            f"  Average frequency: {self.avg_frequency:.2f}"
        )


@dataclass
class SessionSnapshot:
    """会话状态快照（供宿主展示）"""
    composition: str = ""
    state: InputState = InputState.IDLE
    candidates: CandidateList = field(default_factory=list)


def load_config(path: Optional[str] = None, **overrides) -> EngineConfig:
    """
    从 JSON 文件加载配置

    Args:
        path: 配置文件路径，不存在时使用默认值
        overrides: 覆盖文件中的字段

    Returns:
        EngineConfig 实例
    """
    from .logging import get_engine_logger

    values = {}
    if path and os.path.exists(path):
        with open(path, 'rb') as f:
            values = orjson.loads(f.read())

    known = {f.name for f in dataclasses.fields(EngineConfig)}
    for key in list(values):
        if key not in known:
            get_engine_logger().warning(f"忽略未知配置项: {key}")
            values.pop(key)

    values.update(overrides)
    return EngineConfig(**values)
