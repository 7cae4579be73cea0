"""
AI 预测模块

用语言模型生成文本，从中抽取候选词并打分，补充到词库候选之后。
模型不可用时所有预测接口返回空列表。
"""

import os
from collections import OrderedDict
from typing import Dict, List, Optional

from .config import Candidate, CandidateList
from .errors import ModelLoadError
from .language_model import LanguageModel, TorchLanguageModel
from .logging import get_engine_logger, log_execution_time

logger = get_engine_logger()


# 标点符号集合（中英文），用于切分生成文本
PUNCTUATION = set("，。！？、；：“”‘’（）《》【】…—·,.:;!?\"'()-_+=[]{}|\\<>/@#$%^&*~`")

# 用户选择历史最多保留的拼音数
MAX_PATTERN_KEYS = 1000
# 每个拼音最多保留的选择记录
MAX_SELECTIONS_PER_PINYIN = 100


def _is_wide(char: str) -> bool:
    return ord(char) > 0x7f and char not in PUNCTUATION


def extract_wide_tokens(text: str) -> List[str]:
    """连续的非 ASCII 字符视为一个词，ASCII 字符与标点作为分隔"""
    tokens = []
    current = []
    for char in text:
        if _is_wide(char):
            current.append(char)
        elif current:
            tokens.append(''.join(current))
            current = []
    if current:
        tokens.append(''.join(current))
    return tokens


def split_words(text: str) -> List[str]:
    """按空白与标点切分"""
    words = []
    current = []
    for char in text:
        if char.isspace() or char in PUNCTUATION:
            if current:
                words.append(''.join(current))
                current = []
        else:
            current.append(char)
    if current:
        words.append(''.join(current))
    return words


def _dedupe(words: List[str]) -> List[str]:
    return list(dict.fromkeys(words))


class PredictionEngine:
    """预测适配器"""

    def __init__(
        self,
        model_path: str = "",
        vocab_path: Optional[str] = None,
        language_model: Optional[LanguageModel] = None,
        prediction_threshold: float = 0.5,
        temperature: float = 0.7,
        top_p: float = 0.9,
        top_k: int = 40,
    ):
        self.model_path = model_path
        self.vocab_path = vocab_path
        self.language_model = language_model
        self._owns_model = language_model is None
        self.prediction_threshold = 0.5
        self.set_prediction_threshold(prediction_threshold)

        self.temperature = temperature
        self.top_p = top_p
        self.top_k = top_k

        self.initialized = False
        # 拼音 -> 用户选择过的词（按最近使用排序）
        self.user_patterns: "OrderedDict[str, List[str]]" = OrderedDict()

    def initialize(self) -> bool:
        """
        初始化预测引擎

        模型文件缺失时仍返回 True（预测保持不可用）；模型损坏时返回 False。
        """
        if self.language_model is not None and not self._owns_model:
            self.initialized = True
            logger.info("预测引擎使用外部语言模型")
            return True

        logger.info(f"初始化预测引擎，模型: {self.model_path}")

        if not self.model_path:
            logger.warning("未指定模型路径，AI 预测已禁用")
            return True

        if not os.path.exists(self.model_path):
            logger.warning(f"模型文件不存在: {self.model_path}，AI 预测已禁用")
            return True

        model = TorchLanguageModel(self.model_path, self.vocab_path)
        try:
            model.load()
        except ModelLoadError as e:
            logger.error(f"语言模型加载失败: {e}")
            return False

        self.language_model = model
        self.initialized = True
        logger.info("✓ 预测引擎初始化完成")
        return True

    def shutdown(self):
        if self._owns_model and isinstance(self.language_model, TorchLanguageModel):
            self.language_model.unload()
        self.initialized = False

    def is_available(self) -> bool:
        return (
            self.initialized
            and self.language_model is not None
            and self.language_model.is_loaded()
        )

    def get_model_info(self) -> str:
        if not self.is_available():
            return "Model not loaded"
        info = getattr(self.language_model, "get_model_info", None)
        return info() if callable(info) else type(self.language_model).__name__

    def update_model(self, new_model_path: str) -> bool:
        """切换模型文件并重新初始化"""
        if new_model_path == self.model_path and self.is_available():
            return True

        if not os.path.exists(new_model_path):
            logger.error(f"新模型文件不存在: {new_model_path}")
            return False

        self.shutdown()
        self.model_path = new_model_path
        self.vocab_path = None
        self.language_model = None
        self._owns_model = True
        return self.initialize() and self.is_available()

    def set_prediction_threshold(self, threshold: float):
        self.prediction_threshold = max(0.0, min(1.0, float(threshold)))
        logger.debug(f"预测阈值设置为: {self.prediction_threshold}")

    def get_prediction_threshold(self) -> float:
        return self.prediction_threshold

    # ===== 预测 =====

    def _generate(self, prompt: str, max_tokens: int) -> str:
        try:
            return self.language_model.generate_text(
                prompt,
                max_tokens=max_tokens,
                temperature=self.temperature,
                top_p=self.top_p,
                top_k=self.top_k,
            ) or ""
        except Exception as e:
            logger.error(f"文本生成失败: {type(e).__name__}: {e}")
            return ""

    @log_execution_time()
    def predict_from_pinyin(self, pinyin: str, context: str = "", max_predictions: int = 5) -> CandidateList:
        """
        根据拼音和上下文预测中文词

        所有结果都携带输入拼音，不为每个词单独推导拼音
        """
        if not self.is_available() or max_predictions <= 0:
            return []

        prompt = f"根据拼音'{pinyin}'和上下文'{context}'，预测可能的中文词汇："
        generated = self._generate(prompt, max_predictions * 15)
        if not generated:
            return []

        predictions = []
        for word in _dedupe(extract_wide_tokens(generated)):
            if len(predictions) >= max_predictions:
                break
            score = self.calculate_pinyin_score(word, pinyin, context)
            if score >= self.prediction_threshold:
                predictions.append(Candidate(word, pinyin, score, 0, True))

        return predictions

    def predict_next_words(self, context: str, max_predictions: int = 5) -> CandidateList:
        """根据已提交文本预测下一个词"""
        if not self.is_available() or max_predictions <= 0:
            return []

        generated = self._generate(context, max_predictions * 10)
        if not generated:
            return []

        words = [w for w in _dedupe(split_words(generated)) if w not in context]
        scores = self._next_word_scores(context, words)

        predictions = []
        for word, score in zip(words, scores):
            if len(predictions) >= max_predictions:
                break
            if score >= self.prediction_threshold:
                predictions.append(Candidate(word, "", score, 0, True))

        predictions.sort(key=lambda c: c.score, reverse=True)
        return predictions

    def _next_word_scores(self, context: str, words: List[str]) -> List[float]:
        scorer = getattr(self.language_model, "next_word_probabilities", None)
        if callable(scorer) and words:
            try:
                return list(scorer(context, words))
            except Exception as e:
                logger.error(f"词概率计算失败: {type(e).__name__}: {e}")
        return [self.calculate_pinyin_score(w, "", context) for w in words]

    def complete_partial_input(self, partial_text: str, max_completions: int = 5) -> CandidateList:
        """补全部分输入：只保留以 partial_text 开头且更长的词"""
        if not self.is_available() or not partial_text or max_completions <= 0:
            return []

        generated = self._generate(f"请补全以下文本：{partial_text}", max_completions * 20)
        if not generated:
            return []

        # 生成结果是续写，拼回前缀后再切词
        words = split_words(generated) + split_words(partial_text + generated)
        completions = sorted({w for w in words if w.startswith(partial_text) and len(w) > len(partial_text)})

        results = []
        for completion in completions:
            if len(results) >= max_completions:
                break
            score = self.calculate_completion_score(partial_text, completion)
            if score >= self.prediction_threshold:
                results.append(Candidate(completion, "", score, 0, True))
        return results

    # ===== 打分与学习 =====

    def calculate_pinyin_score(self, word: str, pinyin: str, context: str = "") -> float:
        """基础 0.6；用户选过 +0.3；上下文非空且不含该词 +0.1；上限 1.0"""
        score = 0.6

        if word in self.user_patterns.get(pinyin, ()):
            score += 0.3

        if context and word not in context:
            score += 0.1

        return min(1.0, score)

    @staticmethod
    def calculate_completion_score(partial_text: str, completion: str) -> float:
        extra = len(completion) - len(partial_text)
        if extra <= 0:
            return 0.0
        return 0.7 + 0.3 / (extra + 1)

    def learn_user_pattern(self, pinyin: str, selected_text: str):
        """记录用户选择（仅内存，不持久化）"""
        if not self.is_available() or not pinyin or not selected_text:
            return

        history = self.user_patterns.setdefault(pinyin, [])
        history.append(selected_text)
        del history[:-MAX_SELECTIONS_PER_PINYIN]
        self.user_patterns.move_to_end(pinyin)

        while len(self.user_patterns) > MAX_PATTERN_KEYS:
            self.user_patterns.popitem(last=False)

        logger.debug(f"记录用户选择: {pinyin} -> {selected_text}")

    def get_user_patterns(self) -> Dict[str, List[str]]:
        return {k: list(v) for k, v in self.user_patterns.items()}
