"""
输入会话控制器测试
"""

import pytest

from pinyin_ime.engine import (
    Candidate,
    EngineConfig,
    InitializationError,
    InputEvent,
    InputEventType,
    InputSessionController,
    InputState,
    PredictionEngine,
    SQLiteCandidateStore,
    StorageOpenError,
    create_session,
)
from pinyin_ime.engine.config import KEY_BACKSPACE, KEY_ENTER, KEY_ESCAPE
from pinyin_ime.engine.core import parse_candidate_index

from conftest import FakeCandidateStore, make_predictor, write_corrupt_checkpoint


class Recorder:
    """按顺序记录会话通知"""

    def __init__(self, session):
        self.events = []
        session.add_candidate_listener(lambda c: self.events.append(("candidates", [x.text for x in c])))
        session.add_commit_listener(lambda t: self.events.append(("commit", t)))
        session.add_state_listener(lambda s: self.events.append(("state", s)))

    def of(self, kind):
        return [payload for k, payload in self.events if k == kind]


def type_keys(session, text):
    return [session.process_input(InputEvent.key(ch)) for ch in text]


def special_key(code):
    return InputEvent(InputEventType.KEY_PRESS, "", code)


@pytest.fixture
def session(config):
    s = create_session(config)
    yield s
    s.shutdown()


class TestTyping:
    """拼音输入"""

    def test_nihao_select_first(self, session):
        recorder = Recorder(session)
        assert all(type_keys(session, "nihao"))

        assert session.get_composition() == "nihao"
        assert session.get_state() == InputState.SELECTING
        top = session.get_candidates()[0]
        assert top.text == "你好"
        assert top.score == 58.0
        assert not top.is_prediction

        assert session.select_candidate(0)
        assert recorder.of("commit") == ["你好"]
        assert session.get_state() == InputState.IDLE
        assert session.get_composition() == ""
        assert session.get_candidates() == []
        assert session.store.get_word_info("你好", "ni hao").frequency == 101

    def test_state_transitions(self, session):
        recorder = Recorder(session)
        type_keys(session, "nihao")
        session.select_candidate(0)
        assert recorder.of("state") == [InputState.COMPOSING, InputState.SELECTING, InputState.IDLE]

    def test_candidates_emitted_before_state(self, session):
        recorder = Recorder(session)
        type_keys(session, "n")
        assert [k for k, _ in recorder.events] == ["state", "candidates", "state"]

    def test_no_candidates_stays_composing(self, session):
        assert session.process_input(InputEvent.key("x"))
        assert session.get_state() == InputState.COMPOSING
        assert session.get_candidates() == []

    def test_rejected_letter(self, session):
        recorder = Recorder(session)
        assert not session.process_input(InputEvent.key("i"))
        assert session.get_state() == InputState.IDLE
        assert recorder.events == []
        assert session.get_stats()["rejected_events"] == 1

    def test_uppercase_is_lowered(self, session):
        assert session.process_input(InputEvent.key("N"))
        assert session.get_composition() == "n"

    def test_modifier_keys_ignored(self, session):
        event = InputEvent(InputEventType.KEY_PRESS, "n", ord("n"), ctrl=True)
        assert session.process_input(event)
        assert session.get_composition() == "n"

    def test_unknown_key(self, session):
        assert not session.process_input(InputEvent.key(" "))
        assert not session.process_input(special_key(200))

    def test_snapshot(self, session):
        type_keys(session, "ni")
        snap = session.snapshot()
        assert snap.composition == "ni"
        assert snap.state == InputState.SELECTING
        assert [c.text for c in snap.candidates] == ["你好"]


class TestEditing:
    """退格、取消与回车"""

    def test_backspace_to_empty(self, session):
        recorder = Recorder(session)
        type_keys(session, "n")
        assert session.process_input(special_key(KEY_BACKSPACE))
        assert session.get_composition() == ""
        assert session.get_state() == InputState.IDLE
        assert recorder.events[-1] == ("candidates", [])
        assert not session.process_input(special_key(KEY_BACKSPACE))

    def test_backspace_recomputes(self, session):
        type_keys(session, "niv")
        assert session.get_composition() == "ni"  # v 被拒绝
        type_keys(session, "h")
        session.process_input(special_key(KEY_BACKSPACE))
        assert session.get_composition() == "ni"
        assert [c.text for c in session.get_candidates()] == ["你好"]

    def test_escape(self, session):
        recorder = Recorder(session)
        type_keys(session, "ni")
        assert session.process_input(special_key(KEY_ESCAPE))
        assert session.get_state() == InputState.IDLE
        assert recorder.of("commit") == []

    def test_enter_commits_raw_pinyin(self, session):
        recorder = Recorder(session)
        type_keys(session, "nihao")
        assert session.process_input(special_key(KEY_ENTER))
        assert recorder.of("commit") == ["nihao"]
        assert session.get_state() == InputState.IDLE
        # 提交原始拼音不会学习
        assert session.store.get_word_info("你好", "ni hao").frequency == 100

    def test_enter_on_empty(self, session):
        assert not session.process_input(special_key(KEY_ENTER))

    def test_clear_composition_always_notifies(self, session):
        recorder = Recorder(session)
        session.clear_composition()
        assert recorder.events == [("candidates", [])]

    def test_clear_event(self, session):
        type_keys(session, "ni")
        assert session.process_input(InputEvent(InputEventType.CLEAR_COMPOSITION))
        assert session.get_composition() == ""


class TestSelection:
    """候选选择"""

    def test_digit_key_selects(self, session):
        recorder = Recorder(session)
        type_keys(session, "nihao")
        assert session.process_input(InputEvent.key("1"))
        assert recorder.of("commit") == ["你好"]

    def test_digit_out_of_range(self, session):
        type_keys(session, "nihao")
        assert not session.process_input(InputEvent.key("9"))
        assert session.get_composition() == "nihao"

    def test_select_out_of_range_has_no_effect(self, session):
        recorder = Recorder(session)
        type_keys(session, "nihao")
        before = len(recorder.events)
        assert not session.select_candidate(5)
        assert not session.select_candidate(-1)
        assert len(recorder.events) == before
        assert session.store.get_word_info("你好", "ni hao").frequency == 100

    def test_select_event(self, session):
        type_keys(session, "nihao")
        assert not session.process_input(InputEvent(InputEventType.CANDIDATE_SELECT, "abc"))
        assert session.get_composition() == "nihao"
        assert session.process_input(InputEvent(InputEventType.CANDIDATE_SELECT, "0"))
        assert session.get_composition() == ""

    @pytest.mark.parametrize("data,expected", [("0", 0), (" 3 ", 3), ("-1", -1), ("", None), ("1a", None)])
    def test_parse_candidate_index(self, data, expected):
        assert parse_candidate_index(data) == expected

    def test_learning_disabled(self, db_path):
        session = create_session(EngineConfig(dictionary_path=db_path, enable_prediction=False, enable_learning=False))
        type_keys(session, "nihao")
        session.select_candidate(0)
        assert session.store.get_word_info("你好", "ni hao").frequency == 100
        session.shutdown()


class TestCommitText:
    """提交文本事件"""

    def test_commit_payload(self, session):
        recorder = Recorder(session)
        type_keys(session, "ni")
        assert session.process_input(InputEvent(InputEventType.COMMIT_TEXT, "你好世界"))
        assert recorder.of("commit") == ["你好世界"]
        assert session.get_composition() == ""

    def test_commit_empty_payload_uses_composition(self, session):
        recorder = Recorder(session)
        type_keys(session, "ni")
        session.process_input(InputEvent(InputEventType.COMMIT_TEXT, ""))
        assert recorder.of("commit") == ["ni"]

    def test_commit_composition_returns_text(self, session):
        type_keys(session, "ni")
        assert session.commit_composition() == "ni"
        assert session.commit_composition() == ""


class TestPrediction:
    """AI 候选合并"""

    def make_session(self, db_path, text, **overrides):
        config = EngineConfig(dictionary_path=db_path, **overrides)
        return create_session(config, predictor=make_predictor(text))

    def test_merge_dedupes_and_orders(self, db_path):
        session = self.make_session(db_path, "你好 你们")
        type_keys(session, "nihao")
        candidates = session.get_candidates()
        assert [c.text for c in candidates] == ["你好", "你们"]
        assert not candidates[0].is_prediction
        assert candidates[1].is_prediction
        assert candidates[1].pinyin == "nihao"
        session.shutdown()

    def test_truncated_to_max_candidates(self, db_path):
        session = self.make_session(db_path, "你们 你呢 拟好", max_candidates=2)
        type_keys(session, "nihao")
        assert [c.text for c in session.get_candidates()] == ["你好", "你们"]
        session.shutdown()

    def test_threshold_filters_predictions(self, db_path):
        session = self.make_session(db_path, "你们", prediction_threshold=0.8)
        type_keys(session, "nihao")
        assert [c.text for c in session.get_candidates()] == ["你好"]
        session.shutdown()

    def test_prediction_disabled_never_calls_model(self, db_path):
        session = self.make_session(db_path, "你们", enable_prediction=False)
        type_keys(session, "nihao")
        assert [c.text for c in session.get_candidates()] == ["你好"]
        assert session.predictor.language_model.calls == []
        session.shutdown()

    def test_selecting_prediction_learns_word(self, db_path):
        session = self.make_session(db_path, "你们")
        type_keys(session, "nihao")
        assert session.select_candidate(1)

        info = session.store.get_word_info("你们", "ni hao")
        assert info is not None and info.is_user_word
        assert session.predictor.get_user_patterns() == {"nihao": ["你们"]}
        assert session.get_stats()["prediction_calls"] == 5

    def test_predictor_failure_is_not_fatal(self, db_path, tmp_path):
        (tmp_path / "model.pt").write_bytes(b"garbage")
        (tmp_path / "vocab.json").write_text("not json")
        config = EngineConfig(dictionary_path=db_path, model_path=str(tmp_path / "model.pt"))
        session = create_session(config)
        assert session.predictor is None
        type_keys(session, "nihao")
        assert [c.text for c in session.get_candidates()] == ["你好"]
        session.shutdown()

    def test_corrupt_checkpoint_is_not_fatal(self, db_path, tmp_path):
        config = EngineConfig(dictionary_path=db_path, model_path=write_corrupt_checkpoint(tmp_path))
        session = create_session(config)
        assert session.predictor is None
        type_keys(session, "nihao")
        assert session.get_candidates()[0].text == "你好"
        session.shutdown()

    def test_equal_scores_keep_dictionary_first(self):
        store = FakeCandidateStore([Candidate("你们", "ni men", 0.6, 3, False)])
        session = create_session(EngineConfig(), store=store, predictor=make_predictor("拟好"))
        type_keys(session, "n")

        candidates = session.get_candidates()
        assert [c.text for c in candidates] == ["你们", "拟好"]
        assert candidates[0].score == candidates[1].score == 0.6
        assert not candidates[0].is_prediction
        assert candidates[1].is_prediction

    def test_only_dictionary_duplicates_are_dropped(self):
        class RepeatingPredictor:
            def initialize(self):
                return True

            def shutdown(self):
                pass

            def is_available(self):
                return True

            def learn_user_pattern(self, pinyin, text):
                pass

            def predict_from_pinyin(self, pinyin, context="", max_predictions=5):
                return [
                    Candidate("你们", pinyin, 0.6, 0, True),
                    Candidate("拟好", pinyin, 0.6, 0, True),
                    Candidate("拟好", pinyin, 0.6, 0, True),
                ]

        store = FakeCandidateStore([Candidate("你们", "ni men", 0.9, 3, False)])
        session = create_session(EngineConfig(), store=store, predictor=RepeatingPredictor())
        type_keys(session, "n")
        assert [(c.text, c.is_prediction) for c in session.get_candidates()] == [
            ("你们", False), ("拟好", True), ("拟好", True),
        ]

    def test_recompute_timing_recorded(self, session):
        type_keys(session, "nihao")
        assert session.stats['recomputes'] == 5
        assert session.stats['recompute_ms'] >= 0
        assert session.get_stats()['avg_recompute_ms'] == pytest.approx(session.stats['recompute_ms'] / 5)


class TestConfig:
    """配置更新与初始化"""

    def test_update_applies_on_next_event(self, session, config):
        session.store.add_user_word("你们", "ni men", 50)
        session.update_config(config.replace(max_candidates=1))
        assert session.get_config().max_candidates == 1
        assert session.config.max_candidates == 9

        type_keys(session, "n")
        assert session.config.max_candidates == 1
        assert len(session.get_candidates()) == 1

    def test_enable_prediction_later(self, session, config):
        session.update_config(config.replace(enable_prediction=True, model_path=""))
        type_keys(session, "n")
        # 没有模型文件时预测保持不可用
        assert not session.get_stats()["prediction_available"]

    def test_invalid_config(self):
        with pytest.raises(ValueError):
            EngineConfig(max_candidates=0)
        with pytest.raises(ValueError):
            EngineConfig(prediction_threshold=1.5)

    def test_segmenter_failure_is_fatal(self, config):
        class BrokenSegmenter:
            max_buffer_length = 40

            def initialize(self):
                return False

        with pytest.raises(InitializationError) as exc_info:
            create_session(config, segmenter=BrokenSegmenter())
        assert exc_info.value.component == "segmenter"

    def test_store_reporting_failure_is_fatal(self):
        controller = InputSessionController(EngineConfig(enable_prediction=False), store=FakeCandidateStore(init_ok=False))
        with pytest.raises(InitializationError) as exc_info:
            controller.initialize()
        assert exc_info.value.component == "store"

    def test_store_failure_is_fatal(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("x")
        config = EngineConfig(dictionary_path=str(blocker / "dictionary.db"), enable_prediction=False)
        with pytest.raises(StorageOpenError):
            create_session(config)

    def test_injected_store(self, db_path):
        store = SQLiteCandidateStore(db_path)
        controller = InputSessionController(EngineConfig(enable_prediction=False), store=store)
        assert controller.initialize()
        assert controller.store is store
        assert store.is_open
        controller.shutdown()
        assert not store.is_open

    def test_listener_removal(self, session):
        seen = []
        session.add_commit_listener(seen.append)
        session.remove_listener(seen.append)
        type_keys(session, "ni")
        session.commit_composition()
        assert seen == []

    def test_stats(self, session):
        type_keys(session, "nihao")
        session.select_candidate(0)
        stats = session.get_stats()
        assert stats["total_events"] == 5
        assert stats["commits"] == 1
        assert stats["selections"] == 1
        assert stats["prediction_available"] is False


def test_prediction_engine_injected_without_model():
    predictor = PredictionEngine()
    assert predictor.initialize()
    assert not predictor.is_available()
