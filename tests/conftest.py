"""
测试公共夹具
"""

import pytest

from pinyin_ime.engine import CharVocab, EngineConfig, PredictionEngine, SQLiteCandidateStore


class FakeLanguageModel:
    """返回固定文本的语言模型，记录收到的 prompt"""

    def __init__(self, text: str = "", loaded: bool = True, error: Exception = None):
        self.text = text
        self.loaded = loaded
        self.error = error
        self.calls = []

    def generate_text(self, prompt, max_tokens=50, temperature=0.7, top_p=0.9, top_k=40):
        self.calls.append((prompt, max_tokens))
        if self.error is not None:
            raise self.error
        return self.text

    def is_loaded(self):
        return self.loaded


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "dictionary.db")


@pytest.fixture
def store(db_path):
    s = SQLiteCandidateStore(db_path)
    s.initialize()
    yield s
    s.shutdown()


@pytest.fixture
def config(db_path):
    return EngineConfig(dictionary_path=db_path, enable_prediction=False)


def make_predictor(text: str = "", **kwargs) -> PredictionEngine:
    """带假语言模型的预测引擎（已初始化）"""
    predictor = PredictionEngine(language_model=FakeLanguageModel(text, **kwargs))
    predictor.initialize()
    return predictor


class FakeCandidateStore:
    """内存词库：返回固定候选，记录词频更新"""

    def __init__(self, candidates=None, init_ok: bool = True):
        self.candidates = list(candidates or [])
        self.init_ok = init_ok
        self.updated = []

    def initialize(self):
        return self.init_ok

    def shutdown(self):
        pass

    def search_by_pinyin(self, pinyin, max_results=10):
        return list(self.candidates[:max_results])

    def update_word_frequency(self, word, pinyin):
        self.updated.append((word, pinyin))
        return True

    def learn_user_input(self, text, pinyin_sequence):
        return True


def write_corrupt_checkpoint(directory) -> str:
    """词表正常、模型文件损坏，返回模型路径"""
    CharVocab(list("你好")).save(str(directory / "vocab.json"))
    (directory / "model.pt").write_bytes(b"garbage")
    return str(directory / "model.pt")
