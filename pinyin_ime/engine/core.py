"""
输入会话控制器

拼音切分 → 词库查询 → AI 预测补充 → 合并排序 → 通知宿主。
单线程同步使用：调用方须串行化同一会话的事件。
"""

import time
from typing import Callable, Dict, List, Optional

from .config import (
    KEY_BACKSPACE,
    KEY_ENTER,
    KEY_ESCAPE,
    Candidate,
    CandidateList,
    EngineConfig,
    InputEvent,
    InputEventType,
    InputState,
    SessionSnapshot,
)
from .errors import InitializationError
from .logging import get_engine_logger
from .predictor import PredictionEngine
from .segmenter import PinyinSegmenter
from .store import CandidateStore, SQLiteCandidateStore

logger = get_engine_logger()

CandidateListener = Callable[[CandidateList], None]
CommitListener = Callable[[str], None]
StateListener = Callable[[InputState], None]


def parse_candidate_index(data: str) -> Optional[int]:
    """解析候选序号，非法时返回 None"""
    try:
        return int((data or "").strip())
    except ValueError:
        return None


class InputSessionController:
    """
    输入会话控制器

    状态机：
    - IDLE → COMPOSING：接受字母输入
    - COMPOSING/SELECTING → SELECTING：缓冲区变化后候选非空
    - COMPOSING/SELECTING → IDLE：提交、取消或缓冲区清空
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        store: Optional[CandidateStore] = None,
        predictor: Optional[PredictionEngine] = None,
        segmenter: Optional[PinyinSegmenter] = None,
    ):
        self.config = config or EngineConfig()
        self._pending_config: Optional[EngineConfig] = None

        self.segmenter = segmenter or PinyinSegmenter(self.config.max_buffer_length)
        self.store = store if store is not None else SQLiteCandidateStore(self.config.dictionary_path)
        if predictor is not None:
            self.predictor = predictor
        elif self.config.enable_prediction:
            self.predictor = self._build_predictor(self.config)
        else:
            self.predictor = None

        self.state = InputState.IDLE
        self.composition = ""
        self.candidates: CandidateList = []

        self._candidate_listeners: List[CandidateListener] = []
        self._commit_listeners: List[CommitListener] = []
        self._state_listeners: List[StateListener] = []

        self.stats = {
            'events': 0,
            'rejected': 0,
            'commits': 0,
            'selections': 0,
            'prediction_calls': 0,
            'recomputes': 0,
            'recompute_ms': 0.0,
        }

    @staticmethod
    def _build_predictor(config: EngineConfig) -> PredictionEngine:
        return PredictionEngine(
            model_path=config.model_path,
            vocab_path=config.resolved_vocab_path,
            prediction_threshold=config.prediction_threshold,
            temperature=config.temperature,
            top_p=config.top_p,
            top_k=config.top_k,
        )

    # ===== 生命周期 =====

    def initialize(self) -> bool:
        """
        初始化各组件

        切分器或词库失败时抛出异常（致命）；预测引擎失败只禁用预测。
        """
        logger.info("初始化输入法引擎...")

        if not self.segmenter.initialize():
            raise InitializationError("拼音切分器初始化失败", component="segmenter")

        if not self.store.initialize():
            raise InitializationError("词库初始化失败", component="store")

        if self.predictor is not None and not self.predictor.initialize():
            logger.warning("预测引擎初始化失败，继续运行但不使用 AI 预测")
            self.predictor = None

        self._log_status()
        return True

    def shutdown(self):
        logger.info("关闭输入法引擎...")
        if self.predictor is not None:
            self.predictor.shutdown()
        self.store.shutdown()
        self.clear_composition()
        logger.info("输入法引擎已关闭")

    def _log_status(self):
        logger.info("=" * 50)
        logger.info("输入法引擎 (词库 + AI 预测)")
        logger.info(f"  词库: {'✓' if self.store else '✗'}")
        logger.info(f"  预测: {'✓' if self.predictor and self.predictor.is_available() else '✗'}")
        logger.info(f"  候选数: {self.config.max_candidates}")
        logger.info("=" * 50)

    # ===== 配置 =====

    def update_config(self, config: EngineConfig):
        """新配置在下一个事件开始时生效"""
        self._pending_config = config

    def get_config(self) -> EngineConfig:
        return self._pending_config or self.config

    def _apply_pending_config(self):
        if self._pending_config is None:
            return

        old, new = self.config, self._pending_config
        self.config = new
        self._pending_config = None
        self.segmenter.max_buffer_length = new.max_buffer_length

        if new.enable_prediction and self.predictor is None:
            predictor = self._build_predictor(new)
            if predictor.initialize():
                self.predictor = predictor
            else:
                logger.warning("预测引擎初始化失败，继续运行但不使用 AI 预测")
        elif not new.enable_prediction and self.predictor is not None:
            self.predictor.shutdown()
            self.predictor = None

        if self.predictor is not None:
            self.predictor.set_prediction_threshold(new.prediction_threshold)
            self.predictor.temperature = new.temperature
            self.predictor.top_p = new.top_p
            self.predictor.top_k = new.top_k

        logger.info(f"配置已更新: max_candidates {old.max_candidates} -> {new.max_candidates}, "
                    f"prediction={new.enable_prediction}, learning={new.enable_learning}")

    # ===== 监听器 =====

    def add_candidate_listener(self, listener: CandidateListener):
        self._candidate_listeners.append(listener)

    def add_commit_listener(self, listener: CommitListener):
        self._commit_listeners.append(listener)

    def add_state_listener(self, listener: StateListener):
        self._state_listeners.append(listener)

    def remove_listener(self, listener: Callable):
        for listeners in (self._candidate_listeners, self._commit_listeners, self._state_listeners):
            if listener in listeners:
                listeners.remove(listener)

    def _emit_candidates(self):
        snapshot = list(self.candidates)
        for listener in list(self._candidate_listeners):
            listener(snapshot)

    def _emit_commit(self, text: str):
        self.stats['commits'] += 1
        for listener in list(self._commit_listeners):
            listener(text)

    def _set_state(self, new_state: InputState):
        if self.state == new_state:
            return
        self.state = new_state
        for listener in list(self._state_listeners):
            listener(new_state)

    # ===== 查询 =====

    def get_candidates(self) -> CandidateList:
        return list(self.candidates)

    def get_composition(self) -> str:
        return self.composition

    def get_state(self) -> InputState:
        return self.state

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(self.composition, self.state, list(self.candidates))

    # ===== 事件处理 =====

    def process_input(self, event: InputEvent) -> bool:
        """处理一个输入事件，返回是否被接受"""
        self._apply_pending_config()
        self.stats['events'] += 1

        if event.type == InputEventType.KEY_PRESS:
            handled = self._handle_key_press(event)
        elif event.type == InputEventType.CANDIDATE_SELECT:
            index = parse_candidate_index(event.data)
            handled = index is not None and self.select_candidate(index)
        elif event.type == InputEventType.COMMIT_TEXT:
            handled = self._handle_commit_text(event)
        elif event.type == InputEventType.CLEAR_COMPOSITION:
            self.clear_composition()
            handled = True
        else:
            handled = False

        if not handled:
            self.stats['rejected'] += 1
        return handled

    def _handle_key_press(self, event: InputEvent) -> bool:
        key_code = event.key_code
        if not key_code and len(event.data) == 1:
            key_code = ord(event.data)

        if key_code == KEY_BACKSPACE:
            return self._handle_backspace()

        if key_code == KEY_ESCAPE:
            self.clear_composition()
            return True

        if key_code == KEY_ENTER:
            if not self.composition:
                return False
            self.commit_composition()
            return True

        if not 0 < key_code < 128:
            return False
        ch = chr(key_code)

        # 数字键选择候选（1 起始）
        if '1' <= ch <= '9':
            index = ord(ch) - ord('1')
            if index < len(self.candidates):
                return self.select_candidate(index)
            return False

        if ch.isalpha():
            return self._handle_letter(ch.lower())

        return False

    def _handle_letter(self, ch: str) -> bool:
        if not self.segmenter.add_char(ch):
            return False

        if self.state == InputState.IDLE:
            self._set_state(InputState.COMPOSING)
        self._update_candidates()
        return True

    def _handle_backspace(self) -> bool:
        if not self.composition:
            return False

        self.segmenter.remove_last_char()
        if not self.segmenter.current_pinyin:
            self.clear_composition()
        else:
            self._update_candidates()
        return True

    def _handle_commit_text(self, event: InputEvent) -> bool:
        text = event.data or self.composition
        if text:
            self._emit_commit(text)
        self.clear_composition()
        return True

    def select_candidate(self, index: int) -> bool:
        """选择候选（0 起始），越界时不产生任何副作用"""
        self._apply_pending_config()
        if index < 0 or index >= len(self.candidates):
            return False

        candidate = self.candidates[index]
        self.stats['selections'] += 1

        if self.config.enable_learning:
            self._learn(candidate)

        self._emit_commit(candidate.text)
        self.clear_composition()
        return True

    def _learn(self, candidate: Candidate):
        self.store.update_word_frequency(candidate.text, candidate.pinyin)

        if self.predictor is not None:
            self.predictor.learn_user_pattern(self.composition, candidate.text)

        # AI 候选不在词库中，按最佳切分记为用户词
        if candidate.is_prediction:
            best = self.segmenter.segment_best()
            if best is not None:
                self.store.learn_user_input(candidate.text, best.segments)

    def commit_composition(self) -> str:
        """把原始拼音缓冲区作为文本提交"""
        self._apply_pending_config()
        result = self.composition
        if result:
            self._emit_commit(result)
        self.clear_composition()
        return result

    def clear_composition(self):
        """重置缓冲区、候选与状态，并总是发出空候选通知"""
        self.composition = ""
        self.candidates = []
        self.segmenter.clear()
        self._set_state(InputState.IDLE)
        self._emit_candidates()

    # ===== 候选计算 =====

    def _update_candidates(self):
        start = time.perf_counter()
        self.composition = self.segmenter.current_pinyin

        if not self.composition:
            self.clear_composition()
            return

        self.candidates = self._merge_candidates(self.composition)

        elapsed = (time.perf_counter() - start) * 1000
        self.stats['recomputes'] += 1
        self.stats['recompute_ms'] += elapsed
        logger.debug(f"候选计算 '{self.composition}' 耗时 {elapsed:.2f}ms", extra={'duration_ms': round(elapsed, 2)})

        self._emit_candidates()
        self._set_state(InputState.SELECTING if self.candidates else InputState.COMPOSING)

    def _merge_candidates(self, pinyin: str) -> CandidateList:
        max_candidates = self.config.max_candidates
        candidates = list(self.store.search_by_pinyin(pinyin, max_candidates))

        if self.config.enable_prediction and self.predictor is not None and self.predictor.is_available():
            self.stats['prediction_calls'] += 1
            predictions = self.predictor.predict_from_pinyin(
                pinyin, "", max(1, max_candidates - len(candidates))
            )

            dictionary_texts = {c.text for c in candidates}
            for prediction in predictions:
                if prediction.text in dictionary_texts:
                    continue
                if prediction.score < self.config.prediction_threshold:
                    continue
                candidates.append(prediction)

        # 稳定排序：同分时词库结果在前
        candidates.sort(key=lambda c: c.score, reverse=True)
        return candidates[:max_candidates]

    def get_stats(self) -> Dict:
        recomputes = self.stats['recomputes'] or 1
        return {
            'total_events': self.stats['events'],
            'rejected_events': self.stats['rejected'],
            'commits': self.stats['commits'],
            'selections': self.stats['selections'],
            'prediction_calls': self.stats['prediction_calls'],
            'avg_recompute_ms': self.stats['recompute_ms'] / recomputes,
            'prediction_available': bool(self.predictor and self.predictor.is_available()),
        }


def create_session(config: Optional[EngineConfig] = None, **components) -> InputSessionController:
    """
    创建并初始化会话控制器

    Args:
        config: 引擎配置
        components: 可替换的 store / predictor / segmenter

    Returns:
        已初始化的 InputSessionController
    """
    controller = InputSessionController(config, **components)
    controller.initialize()
    return controller
