"""
拼音切分模块

功能：
1. 按键校验：只接受能构成合法拼音（前缀）的字母
2. 维护拼音缓冲区
3. 穷举缓冲区的全部合法切分方案（歧义保留）
"""

from dataclasses import dataclass
from typing import FrozenSet, List, Optional

from .logging import get_engine_logger

logger = get_engine_logger()


# 标准拼音音节表（无声调）
PINYIN_SYLLABLES: FrozenSet[str] = frozenset({
    # 零声母
    'a', 'ai', 'an', 'ang', 'ao', 'e', 'ei', 'en', 'eng', 'er', 'o', 'ou',

    # b p m f
    'ba', 'bai', 'ban', 'bang', 'bao', 'bei', 'ben', 'beng', 'bi', 'bian', 'biao', 'bie', 'bin', 'bing', 'bo', 'bu',
    'pa', 'pai', 'pan', 'pang', 'pao', 'pei', 'pen', 'peng', 'pi', 'pian', 'piao', 'pie', 'pin', 'ping', 'po', 'pou', 'pu',
    'ma', 'mai', 'man', 'mang', 'mao', 'me', 'mei', 'men', 'meng', 'mi', 'mian', 'miao', 'mie', 'min', 'ming', 'miu',
    'mo', 'mou', 'mu',
    'fa', 'fan', 'fang', 'fei', 'fen', 'feng', 'fo', 'fou', 'fu',

    # d t n l
    'da', 'dai', 'dan', 'dang', 'dao', 'de', 'dei', 'den', 'deng', 'di', 'dian', 'diao', 'die', 'ding', 'diu',
    'dong', 'dou', 'du', 'duan', 'dui', 'dun', 'duo',
    'ta', 'tai', 'tan', 'tang', 'tao', 'te', 'teng', 'ti', 'tian', 'tiao', 'tie', 'ting', 'tong', 'tou', 'tu',
    'tuan', 'tui', 'tun', 'tuo',
    'na', 'nai', 'nan', 'nang', 'nao', 'ne', 'nei', 'nen', 'neng', 'ni', 'nian', 'niang', 'niao', 'nie', 'nin',
    'ning', 'niu', 'nong', 'nou', 'nu', 'nuan', 'nue', 'nuo', 'nv', 'nve',
    'la', 'lai', 'lan', 'lang', 'lao', 'le', 'lei', 'leng', 'li', 'lia', 'lian', 'liang', 'liao', 'lie', 'lin',
    'ling', 'liu', 'long', 'lou', 'lu', 'luan', 'lue', 'lun', 'luo', 'lv', 'lve',

    # g k h
    'ga', 'gai', 'gan', 'gang', 'gao', 'ge', 'gei', 'gen', 'geng', 'gong', 'gou', 'gu', 'gua', 'guai', 'guan',
    'guang', 'gui', 'gun', 'guo',
    'ka', 'kai', 'kan', 'kang', 'kao', 'ke', 'kei', 'ken', 'keng', 'kong', 'kou', 'ku', 'kua', 'kuai', 'kuan',
    'kuang', 'kui', 'kun', 'kuo',
    'ha', 'hai', 'han', 'hang', 'hao', 'he', 'hei', 'hen', 'heng', 'hong', 'hou', 'hu', 'hua', 'huai', 'huan',
    'huang', 'hui', 'hun', 'huo',

    # j q x
    'ji', 'jia', 'jian', 'jiang', 'jiao', 'jie', 'jin', 'jing', 'jiong', 'jiu', 'ju', 'juan', 'jue', 'jun',
    'qi', 'qia', 'qian', 'qiang', 'qiao', 'qie', 'qin', 'qing', 'qiong', 'qiu', 'qu', 'quan', 'que', 'qun',
    'xi', 'xia', 'xian', 'xiang', 'xiao', 'xie', 'xin', 'xing', 'xiong', 'xiu', 'xu', 'xuan', 'xue', 'xun',

    # zh ch sh r
    'zha', 'zhai', 'zhan', 'zhang', 'zhao', 'zhe', 'zhei', 'zhen', 'zheng', 'zhi', 'zhong', 'zhou', 'zhu', 'zhua',
    'zhuai', 'zhuan', 'zhuang', 'zhui', 'zhun', 'zhuo',
    'cha', 'chai', 'chan', 'chang', 'chao', 'che', 'chen', 'cheng', 'chi', 'chong', 'chou', 'chu', 'chuai',
    'chuan', 'chuang', 'chui', 'chun', 'chuo',
    'sha', 'shai', 'shan', 'shang', 'shao', 'she', 'shei', 'shen', 'sheng', 'shi', 'shou', 'shu', 'shua', 'shuai',
    'shuan', 'shuang', 'shui', 'shun', 'shuo',
    'ran', 'rang', 'rao', 're', 'ren', 'reng', 'ri', 'rong', 'rou', 'ru', 'ruan', 'rui', 'run', 'ruo',

    # z c s
    'za', 'zai', 'zan', 'zang', 'zao', 'ze', 'zei', 'zen', 'zeng', 'zi', 'zong', 'zou', 'zu', 'zuan', 'zui',
    'zun', 'zuo',
    'ca', 'cai', 'can', 'cang', 'cao', 'ce', 'cen', 'ceng', 'ci', 'cong', 'cou', 'cu', 'cuan', 'cui', 'cun', 'cuo',
    'sa', 'sai', 'san', 'sang', 'sao', 'se', 'sen', 'seng', 'si', 'song', 'sou', 'su', 'suan', 'sui', 'sun', 'suo',

    # y w
    'ya', 'yan', 'yang', 'yao', 'ye', 'yi', 'yin', 'ying', 'yo', 'yong', 'you', 'yu', 'yuan', 'yue', 'yun',
    'wa', 'wai', 'wan', 'wang', 'wei', 'wen', 'weng', 'wo', 'wu',
})

# 所有音节的全部非空前缀（含音节本身）
PINYIN_PREFIXES: FrozenSet[str] = frozenset(
    syllable[:i] for syllable in PINYIN_SYLLABLES for i in range(1, len(syllable) + 1)
)

MAX_SYLLABLE_LEN = max(len(s) for s in PINYIN_SYLLABLES)

# 声调字符 → 无调字母
TONE_MARKS = {
    'ā': 'a', 'á': 'a', 'ǎ': 'a', 'à': 'a',
    'ē': 'e', 'é': 'e', 'ě': 'e', 'è': 'e',
    'ī': 'i', 'í': 'i', 'ǐ': 'i', 'ì': 'i',
    'ō': 'o', 'ó': 'o', 'ǒ': 'o', 'ò': 'o',
    'ū': 'u', 'ú': 'u', 'ǔ': 'u', 'ù': 'u',
    'ǖ': 'v', 'ǘ': 'v', 'ǚ': 'v', 'ǜ': 'v', 'ü': 'v',
    'ń': 'n', 'ň': 'n', 'ǹ': 'n',
}


@dataclass
class SegmentResult:
    """切分结果"""
    segments: List[str]  # 切分后的拼音列表
    score: float         # 切分得分（越高越好）

    def __str__(self):
        return " ".join(self.segments)


class PinyinSegmenter:
    """拼音切分器"""

    def __init__(self, max_buffer_length: int = 40):
        """
        Args:
            max_buffer_length: 缓冲区最大字母数，超出后拒绝输入
        """
        self.valid_pinyins = PINYIN_SYLLABLES
        self.max_buffer_length = max_buffer_length
        self._buffer = ""
        self._initialized = False

    def initialize(self) -> bool:
        """加载音节表（静态常量，只做自检）"""
        if not self.valid_pinyins:
            return False
        self._initialized = True
        logger.info(f"拼音切分器初始化完成，共 {len(self.valid_pinyins)} 个音节")
        return True

    @property
    def current_pinyin(self) -> str:
        return self._buffer

    def add_char(self, ch: str) -> bool:
        """
        追加一个小写字母

        只有追加后的缓冲区能切成「若干完整音节 + 某个音节的前缀」时才接受，
        对单音节缓冲区即等价于「是某个音节的前缀」。拒绝时不修改状态。
        """
        if len(ch) != 1 or not ('a' <= ch <= 'z'):
            return False
        if len(self._buffer) >= self.max_buffer_length:
            return False

        candidate = self._buffer + ch
        if not self._is_acceptable(candidate):
            return False

        self._buffer = candidate
        return True

    def remove_last_char(self) -> bool:
        if not self._buffer:
            return False
        self._buffer = self._buffer[:-1]
        return True

    def clear(self):
        self._buffer = ""

    def _is_acceptable(self, text: str) -> bool:
        n = len(text)
        # reachable[i]: text[:i] 可以切成完整音节
        reachable = [False] * (n + 1)
        reachable[0] = True

        for i in range(n):
            if not reachable[i]:
                continue
            if text[i:] in PINYIN_PREFIXES:
                return True
            for j in range(i + 1, min(n, i + MAX_SYLLABLE_LEN) + 1):
                if text[i:j] in self.valid_pinyins:
                    reachable[j] = True

        return False

    def get_pinyin_segments(self) -> List[List[str]]:
        """
        返回当前缓冲区的全部合法切分

        例如 xian -> [['xi', 'an'], ['xian']]
        """
        results: List[List[str]] = []
        if not self._buffer:
            return results

        self._segment_recursive(self._buffer, 0, [], results)
        return results

    def _segment_recursive(self, text: str, start: int, current: List[str], results: List[List[str]]):
        if start >= len(text):
            if current:
                results.append(list(current))
            return

        for end in range(start + 1, min(len(text), start + MAX_SYLLABLE_LEN) + 1):
            segment = text[start:end]
            if segment in self.valid_pinyins:
                current.append(segment)
                self._segment_recursive(text, end, current, results)
                current.pop()

    def segment_best(self) -> Optional[SegmentResult]:
        """
        返回最佳切分方案

        更长的音节更具体，优先选择：xian 优于 xi + an
        """
        results = [
            SegmentResult(segments=segments, score=self._segments_score(segments))
            for segments in self.get_pinyin_segments()
        ]
        if not results:
            return None
        # 稳定排序，同分时保留回溯顺序
        results.sort(key=lambda r: r.score, reverse=True)
        return results[0]

    @staticmethod
    def _segments_score(segments: List[str]) -> float:
        score = 1.0
        for pinyin in segments:
            score *= 0.9 + len(pinyin) * 0.05
        return score

    def is_valid_pinyin(self, pinyin: str) -> bool:
        return pinyin in self.valid_pinyins

    def get_pinyin_prefixes(self, pinyin: str) -> List[str]:
        """以 pinyin 为前缀的全部音节（有序）"""
        return sorted(p for p in self.valid_pinyins if p.startswith(pinyin))

    @staticmethod
    def normalize_pinyin(pinyin: str) -> str:
        """转小写、去声调、去除非字母字符"""
        result = []
        for char in pinyin.lower():
            char = TONE_MARKS.get(char, char)
            if 'a' <= char <= 'z':
                result.append(char)
        return ''.join(result)
