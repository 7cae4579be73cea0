"""
语言模型协作者

预测适配器只依赖 LanguageModel 协议（generate_text / is_loaded，
可选 next_word_probabilities / perplexity）。
TorchLanguageModel 是基于字符级 Transformer Decoder 的本地实现。
"""

import os
import math
import pickle
from dataclasses import dataclass, asdict
from typing import List, Optional, Protocol, runtime_checkable

import orjson
import torch
import torch.nn as nn
import torch.nn.functional as F

from .errors import ModelLoadError
from .logging import get_engine_logger

logger = get_engine_logger()


@runtime_checkable
class LanguageModel(Protocol):
    """语言模型最小接口"""

    def generate_text(
        self,
        prompt: str,
        max_tokens: int = 50,
        temperature: float = 0.7,
        top_p: float = 0.9,
        top_k: int = 40,
    ) -> str: ...

    def is_loaded(self) -> bool: ...


@dataclass
class LMConfig:
    """字符级语言模型配置"""
    vocab_size: int = 8000
    d_model: int = 256
    n_heads: int = 4
    n_layers: int = 4
    d_ff: int = 1024
    max_len: int = 128
    dropout: float = 0.1

    pad_id: int = 0
    bos_id: int = 1
    eos_id: int = 2
    unk_id: int = 3


class CharVocab:
    """字符词表"""

    SPECIALS = ('<pad>', '<bos>', '<eos>', '<unk>')

    def __init__(self, chars: Optional[List[str]] = None):
        self.char2id = {token: i for i, token in enumerate(self.SPECIALS)}
        for char in chars or []:
            if char not in self.char2id:
                self.char2id[char] = len(self.char2id)
        self.id2char = {i: c for c, i in self.char2id.items()}

    @property
    def unk_id(self) -> int:
        return self.char2id['<unk>']

    def encode(self, text: str) -> List[int]:
        return [self.char2id.get(c, self.unk_id) for c in text]

    def decode(self, ids: List[int]) -> str:
        chars = []
        for idx in ids:
            token = self.id2char.get(idx, '')
            if token == '<eos>':
                break
            if token in self.SPECIALS:
                continue
            chars.append(token)
        return ''.join(chars)

    def __len__(self):
        return len(self.char2id)

    def save(self, path: str):
        with open(path, 'wb') as f:
            f.write(orjson.dumps({'char2id': self.char2id}))

    @classmethod
    def load(cls, path: str) -> "CharVocab":
        with open(path, 'rb') as f:
            data = orjson.loads(f.read())
        vocab = cls()
        vocab.char2id = {k: int(v) for k, v in data['char2id'].items()}
        vocab.id2char = {i: c for c, i in vocab.char2id.items()}
        return vocab


class CharDecoderLM(nn.Module):
    """自回归字符语言模型（Decoder-only Transformer）"""

    def __init__(self, config: LMConfig):
        super().__init__()
        self.config = config

        self.embedding = nn.Embedding(config.vocab_size, config.d_model, padding_idx=config.pad_id)
        self.pos_embedding = nn.Embedding(config.max_len, config.d_model)

        layer = nn.TransformerEncoderLayer(
            d_model=config.d_model,
            nhead=config.n_heads,
            dim_feedforward=config.d_ff,
            dropout=config.dropout,
            batch_first=True,
        )
        self.transformer = nn.TransformerEncoder(layer, config.n_layers)
        self.ln_f = nn.LayerNorm(config.d_model)

        # 输出层与嵌入层共享权重
        self.output_projection = nn.Linear(config.d_model, config.vocab_size, bias=False)
        self.output_projection.weight = self.embedding.weight

        self.dropout = nn.Dropout(config.dropout)

    def forward(self, input_ids: torch.Tensor) -> torch.Tensor:
        """input_ids: [batch, seq_len] -> logits: [batch, seq_len, vocab_size]"""
        batch_size, seq_len = input_ids.shape
        device = input_ids.device

        positions = torch.arange(seq_len, device=device).unsqueeze(0).expand(batch_size, -1)
        x = self.dropout(self.embedding(input_ids) + self.pos_embedding(positions))

        causal_mask = torch.triu(
            torch.ones(seq_len, seq_len, dtype=torch.bool, device=device), diagonal=1
        )
        x = self.transformer(x, mask=causal_mask, src_key_padding_mask=(input_ids == self.config.pad_id))
        return self.output_projection(self.ln_f(x))


class TorchLanguageModel:
    """
    本地 torch 语言模型

    模型文件为 torch checkpoint: {'config': LMConfig 字段, 'model_state_dict': ...}
    词表为 CharVocab 的 JSON 文件
    """

    def __init__(self, model_path: str = "", vocab_path: Optional[str] = None, device: Optional[str] = None):
        self.model_path = model_path
        self.vocab_path = vocab_path or os.path.join(os.path.dirname(model_path), "vocab.json")
        self.device = torch.device(device or ('cuda' if torch.cuda.is_available() else 'cpu'))
        self.model: Optional[CharDecoderLM] = None
        self.vocab: Optional[CharVocab] = None

    @classmethod
    def from_model(cls, model: CharDecoderLM, vocab: CharVocab, device: str = "cpu") -> "TorchLanguageModel":
        """直接包装已构建的模型（测试或训练后使用）"""
        lm = cls(device=device)
        lm.model = model.to(lm.device).eval()
        lm.vocab = vocab
        return lm

    def load(self) -> bool:
        """
        加载模型

        Raises:
            ModelLoadError: 文件缺失或 checkpoint 损坏
        """
        if not os.path.exists(self.model_path) or not os.path.exists(self.vocab_path):
            raise ModelLoadError(f"模型文件不存在: {self.model_path}", path=self.model_path)

        try:
            self.vocab = CharVocab.load(self.vocab_path)
            checkpoint = torch.load(self.model_path, map_location=self.device, weights_only=True)
            config = LMConfig(**checkpoint['config'])
            model = CharDecoderLM(config).to(self.device)
            model.load_state_dict(checkpoint['model_state_dict'])
        except (OSError, EOFError, KeyError, TypeError, ValueError, RuntimeError, pickle.UnpicklingError) as e:
            self.model = None
            self.vocab = None
            raise ModelLoadError(f"模型加载失败: {e}", path=self.model_path) from e

        self.model = model.eval()
        params = sum(p.numel() for p in self.model.parameters())
        logger.info(f"✓ 语言模型加载成功 ({params:,} 参数, 设备: {self.device})")
        return True

    def save(self, model_path: str, vocab_path: Optional[str] = None):
        if self.model is None or self.vocab is None:
            raise ModelLoadError("没有可保存的模型")
        torch.save(
            {'config': asdict(self.model.config), 'model_state_dict': self.model.state_dict()},
            model_path,
        )
        self.vocab.save(vocab_path or os.path.join(os.path.dirname(model_path), "vocab.json"))

    def unload(self):
        self.model = None
        self.vocab = None

    def is_loaded(self) -> bool:
        return self.model is not None and self.vocab is not None

    def get_model_info(self) -> str:
        if not self.is_loaded():
            return "Model not loaded"
        cfg = self.model.config
        return (
            f"CharDecoderLM(vocab={cfg.vocab_size}, d_model={cfg.d_model}, "
            f"layers={cfg.n_layers}, heads={cfg.n_heads}, device={self.device})"
        )

    def _encode_context(self, text: str) -> List[int]:
        ids = [self.model.config.bos_id] + self.vocab.encode(text)
        return ids[-self.model.config.max_len:]

    @torch.no_grad()
    def generate_text(
        self,
        prompt: str,
        max_tokens: int = 50,
        temperature: float = 0.7,
        top_p: float = 0.9,
        top_k: int = 40,
    ) -> str:
        """自回归生成，返回续写部分（不含 prompt）"""
        if not self.is_loaded():
            return ""

        ids = self._encode_context(prompt)
        generated: List[int] = []
        max_len = self.model.config.max_len

        for _ in range(max(0, max_tokens)):
            window = torch.tensor([ids[-max_len:]], dtype=torch.long, device=self.device)
            logits = self.model(window)[0, -1]
            next_id = self._sample(logits, temperature, top_p, top_k)
            if next_id == self.model.config.eos_id:
                break
            ids.append(next_id)
            generated.append(next_id)

        return self.vocab.decode(generated)

    def _sample(self, logits: torch.Tensor, temperature: float, top_p: float, top_k: int) -> int:
        # 禁止生成 pad / bos
        logits = logits.clone()
        logits[self.model.config.pad_id] = float('-inf')
        logits[self.model.config.bos_id] = float('-inf')

        if temperature <= 0:
            return int(torch.argmax(logits).item())

        logits = logits / temperature

        if top_k and top_k > 0:
            k = min(top_k, logits.size(-1))
            threshold = torch.topk(logits, k).values[-1]
            logits[logits < threshold] = float('-inf')

        if 0.0 < top_p < 1.0:
            sorted_logits, sorted_idx = torch.sort(logits, descending=True)
            cumulative = torch.cumsum(F.softmax(sorted_logits, dim=-1), dim=-1)
            remove = cumulative > top_p
            # 至少保留概率最高的一个
            remove[1:] = remove[:-1].clone()
            remove[0] = False
            logits[sorted_idx[remove]] = float('-inf')

        probs = F.softmax(logits, dim=-1)
        return int(torch.multinomial(probs, 1).item())

    @torch.no_grad()
    def _token_log_probs(self, context: str, continuation: str) -> List[float]:
        context_ids = self._encode_context(context)
        target_ids = self.vocab.encode(continuation)
        ids = (context_ids + target_ids)[-self.model.config.max_len:]
        n_targets = min(len(target_ids), len(ids) - 1)
        if n_targets <= 0:
            return []

        input_ids = torch.tensor([ids[:-1]], dtype=torch.long, device=self.device)
        log_probs = F.log_softmax(self.model(input_ids)[0], dim=-1)
        targets = ids[-n_targets:]
        positions = range(len(ids) - 1 - n_targets, len(ids) - 1)
        return [log_probs[pos, tgt].item() for pos, tgt in zip(positions, targets)]

    def next_word_probabilities(self, context: str, words: List[str]) -> List[float]:
        """每个词紧跟在 context 之后的概率（逐字平均对数概率的指数）"""
        if not self.is_loaded():
            return [0.0] * len(words)

        probs = []
        for word in words:
            token_lps = self._token_log_probs(context, word)
            probs.append(math.exp(sum(token_lps) / len(token_lps)) if token_lps else 0.0)
        return probs

    def perplexity(self, text: str) -> float:
        """文本困惑度，越低越流畅"""
        if not self.is_loaded() or not text:
            return float('inf')
        token_lps = self._token_log_probs("", text)
        if not token_lps:
            return float('inf')
        return math.exp(-sum(token_lps) / len(token_lps))

    def warmup(self) -> bool:
        if not self.is_loaded():
            return False
        self.generate_text("你好", max_tokens=1, temperature=0)
        return True
