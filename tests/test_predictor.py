"""
预测适配器测试（使用假语言模型）
"""

import pytest

from pinyin_ime.engine import PredictionEngine
from pinyin_ime.engine.predictor import MAX_PATTERN_KEYS, extract_wide_tokens, split_words

from conftest import FakeLanguageModel, make_predictor, write_corrupt_checkpoint


class ScoringLanguageModel(FakeLanguageModel):
    """额外提供下一词概率"""

    def __init__(self, text, probabilities):
        super().__init__(text)
        self.probabilities = probabilities

    def next_word_probabilities(self, context, words):
        return [self.probabilities.get(w, 0.0) for w in words]


class TestTokenizing:
    """生成文本切词"""

    def test_wide_tokens(self):
        assert extract_wide_tokens("abc你好def世界!") == ["你好", "世界"]
        assert extract_wide_tokens("你好，世界。") == ["你好", "世界"]
        assert extract_wide_tokens("hello") == []

    def test_split_words(self):
        assert split_words("今天 天气，很好!") == ["今天", "天气", "很好"]


class TestAvailability:
    """模型可用性"""

    def test_no_model_path(self):
        predictor = PredictionEngine(model_path="")
        assert predictor.initialize()
        assert not predictor.is_available()
        assert predictor.predict_from_pinyin("nihao") == []
        assert predictor.get_model_info() == "Model not loaded"

    def test_missing_model_file(self, tmp_path):
        predictor = PredictionEngine(model_path=str(tmp_path / "model.pt"))
        assert predictor.initialize()
        assert not predictor.is_available()

    def test_corrupt_model_file(self, tmp_path):
        (tmp_path / "model.pt").write_bytes(b"garbage")
        (tmp_path / "vocab.json").write_text("not json")
        predictor = PredictionEngine(model_path=str(tmp_path / "model.pt"))
        assert not predictor.initialize()
        assert not predictor.is_available()

    def test_valid_vocab_with_corrupt_model(self, tmp_path):
        predictor = PredictionEngine(model_path=write_corrupt_checkpoint(tmp_path))
        assert not predictor.initialize()
        assert not predictor.is_available()

    def test_unloaded_injected_model(self):
        predictor = make_predictor("你好", loaded=False)
        assert not predictor.is_available()
        assert predictor.predict_from_pinyin("nihao") == []
        assert predictor.predict_next_words("今天") == []
        assert predictor.complete_partial_input("人工") == []

    def test_update_model_missing_file(self, tmp_path):
        predictor = make_predictor("你好")
        assert not predictor.update_model(str(tmp_path / "other.pt"))
        assert predictor.is_available()

    def test_shutdown(self):
        predictor = make_predictor("你好")
        predictor.shutdown()
        assert not predictor.is_available()


class TestThreshold:
    """预测阈值"""

    def test_clamped(self):
        predictor = PredictionEngine()
        predictor.set_prediction_threshold(1.5)
        assert predictor.get_prediction_threshold() == 1.0
        predictor.set_prediction_threshold(-1)
        assert predictor.get_prediction_threshold() == 0.0

    def test_constructor_clamps(self):
        assert PredictionEngine(prediction_threshold=3).get_prediction_threshold() == 1.0


class TestPredictFromPinyin:
    """拼音预测"""

    def test_prompt_and_results(self):
        predictor = make_predictor("你好，世界 hello 你好 中国")
        results = predictor.predict_from_pinyin("nihao", max_predictions=5)

        prompt, max_tokens = predictor.language_model.calls[0]
        assert prompt == "根据拼音'nihao'和上下文''，预测可能的中文词汇："
        assert max_tokens == 75

        assert [c.text for c in results] == ["你好", "世界", "中国"]
        for c in results:
            assert c.pinyin == "nihao"
            assert c.is_prediction
            assert c.frequency == 0
            assert c.score == 0.6

    def test_max_predictions(self):
        predictor = make_predictor("你好 世界 中国")
        assert len(predictor.predict_from_pinyin("nihao", max_predictions=2)) == 2
        assert predictor.predict_from_pinyin("nihao", max_predictions=0) == []

    def test_threshold_filters(self):
        predictor = make_predictor("你好 世界")
        predictor.set_prediction_threshold(0.7)
        assert predictor.predict_from_pinyin("nihao") == []

    def test_history_bonus(self):
        predictor = make_predictor("你好 世界")
        predictor.set_prediction_threshold(0.7)
        predictor.learn_user_pattern("nihao", "世界")
        results = predictor.predict_from_pinyin("nihao")
        assert [c.text for c in results] == ["世界"]
        assert results[0].score == pytest.approx(0.9)

    def test_generation_failure(self):
        predictor = PredictionEngine(language_model=FakeLanguageModel(error=RuntimeError("boom")))
        predictor.initialize()
        assert predictor.predict_from_pinyin("nihao") == []

    def test_empty_generation(self):
        assert make_predictor("").predict_from_pinyin("nihao") == []
        assert make_predictor("hello world").predict_from_pinyin("nihao") == []


class TestNextWordsAndCompletion:
    """下一词预测与补全"""

    def test_next_words_skip_context(self):
        predictor = make_predictor("今天 天气 很好，今天")
        results = predictor.predict_next_words("今天")
        assert [c.text for c in results] == ["天气", "很好"]
        assert all(c.score == pytest.approx(0.7) and c.pinyin == "" for c in results)
        assert predictor.language_model.calls[0] == ("今天", 50)

    def test_next_words_use_model_probabilities(self):
        model = ScoringLanguageModel("天气 很好", {"天气": 0.9, "很好": 0.2})
        predictor = PredictionEngine(language_model=model)
        predictor.initialize()
        results = predictor.predict_next_words("今天")
        assert [c.text for c in results] == ["天气"]
        assert results[0].score == pytest.approx(0.9)

    def test_completion(self):
        predictor = make_predictor("智能 技术")
        results = predictor.complete_partial_input("人工")
        assert [c.text for c in results] == ["人工智能"]
        assert results[0].score == pytest.approx(0.8)
        assert predictor.language_model.calls[0][0] == "请补全以下文本：人工"

    def test_completion_score(self):
        assert PredictionEngine.calculate_completion_score("人工", "人工") == 0.0
        assert PredictionEngine.calculate_completion_score("人", "人工") == pytest.approx(0.85)


class TestLearning:
    """打分与学习"""

    def test_pinyin_score(self):
        predictor = make_predictor()
        assert predictor.calculate_pinyin_score("中国", "zhongguo") == 0.6
        assert predictor.calculate_pinyin_score("中国", "zhongguo", "你好") == pytest.approx(0.7)
        assert predictor.calculate_pinyin_score("中国", "zhongguo", "我爱中国") == 0.6

        predictor.learn_user_pattern("zhongguo", "中国")
        assert predictor.calculate_pinyin_score("中国", "zhongguo", "你好") == pytest.approx(1.0)

    def test_learning_requires_model(self):
        predictor = PredictionEngine()
        predictor.learn_user_pattern("nihao", "你好")
        assert predictor.get_user_patterns() == {}

    def test_pattern_eviction(self):
        predictor = make_predictor()
        for i in range(MAX_PATTERN_KEYS + 1):
            predictor.learn_user_pattern(f"key{i}", "词")
        patterns = predictor.get_user_patterns()
        assert len(patterns) == MAX_PATTERN_KEYS
        assert "key0" not in patterns
        assert f"key{MAX_PATTERN_KEYS}" in patterns

    def test_recent_use_survives_eviction(self):
        predictor = make_predictor()
        for i in range(MAX_PATTERN_KEYS):
            predictor.learn_user_pattern(f"key{i}", "词")
        predictor.learn_user_pattern("key0", "又一次")
        predictor.learn_user_pattern("new", "词")
        patterns = predictor.get_user_patterns()
        assert patterns["key0"] == ["词", "又一次"]
        assert "key1" not in patterns
