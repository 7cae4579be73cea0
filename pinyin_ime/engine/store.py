"""
候选词库模块

基于 SQLite 的持久化词频表：
- (word, pinyin) 唯一
- 按拼音精确 / 前缀 / 子串查询，按词频降序、词长升序排列
- 用户词与系统词分离，删除只作用于用户词
"""

import os
import sqlite3
from typing import Iterable, List, Optional, Protocol, Sequence, Tuple

from .config import Candidate, CandidateList, DictionaryEntry, DictionaryStats
from .errors import SchemaError, StorageOpenError
from .logging import get_engine_logger

logger = get_engine_logger()


# 内置基础词汇 (词, 拼音)，首次运行时写入
SYSTEM_VOCABULARY: Tuple[Tuple[str, str], ...] = (
    ("你好", "ni hao"),
    ("世界", "shi jie"),
    ("中国", "zhong guo"),
    ("输入法", "shu ru fa"),
    ("计算机", "ji suan ji"),
    ("程序", "cheng xu"),
    ("软件", "ruan jian"),
    ("开发", "kai fa"),
    ("技术", "ji shu"),
    ("人工智能", "ren gong zhi neng"),
)
SYSTEM_WORD_FREQUENCY = 100

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS words (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        word TEXT NOT NULL,
        pinyin TEXT NOT NULL,
        frequency INTEGER DEFAULT 1,
        is_user_word INTEGER DEFAULT 0,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        updated_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        UNIQUE(word, pinyin)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_pinyin ON words(pinyin)",
    "CREATE INDEX IF NOT EXISTS idx_frequency ON words(frequency DESC)",
)

# 匹配加分
EXACT_MATCH_BONUS = 30.0
PREFIX_MATCH_BONUS = 20.0
SUBSTRING_MATCH_BONUS = 10.0


def _compact(pinyin: str) -> str:
    """去掉音节间空格，用于与原始按键缓冲区比较"""
    return pinyin.replace(" ", "")


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def calculate_score(word: str, word_pinyin: str, frequency: int, query_pinyin: str) -> float:
    """
    候选得分

    score = min(50, 词频/10) + max(0, 20 - 词长) + 匹配加分
    匹配加分：完全匹配 30，前缀 20，包含 10。
    拼音比较同时考虑去空格形式，nihao 与 "ni hao" 视为完全匹配。
    """
    score = min(50.0, max(0, frequency) / 10.0)
    score += max(0.0, 20.0 - len(word))

    stored, query = word_pinyin, query_pinyin
    stored_compact, query_compact = _compact(stored), _compact(query)

    if stored == query or (query_compact and stored_compact == query_compact):
        score += EXACT_MATCH_BONUS
    elif stored.startswith(query) or (query_compact and stored_compact.startswith(query_compact)):
        score += PREFIX_MATCH_BONUS
    elif query in stored or (query_compact and query_compact in stored_compact):
        score += SUBSTRING_MATCH_BONUS

    return score


class CandidateStore(Protocol):
    """词库接口，控制器只依赖这些方法"""

    def initialize(self) -> bool: ...

    def shutdown(self) -> None: ...

    def search_by_pinyin(self, pinyin: str, max_results: int = 10) -> CandidateList: ...

    def update_word_frequency(self, word: str, pinyin: str) -> bool: ...

    def learn_user_input(self, text: str, pinyin_sequence: Sequence[str]) -> bool: ...


class SQLiteCandidateStore:
    """SQLite 词库（单连接，非线程安全，由调用方串行化访问）"""

    def __init__(self, db_path: str = "data/dictionary.db"):
        self.db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None

    # ===== 生命周期 =====

    def initialize(self) -> bool:
        """
        打开数据库、建表、写入内置词汇

        Raises:
            StorageOpenError: 数据库文件无法打开
            SchemaError: 表结构创建失败
        """
        logger.info(f"初始化词库: {self.db_path}")

        try:
            if self.db_path != ":memory:":
                parent = os.path.dirname(os.path.abspath(self.db_path))
                os.makedirs(parent, exist_ok=True)
            # 宿主可能在其他线程调用（如 Web 线程池），由宿主负责串行化
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
        except (OSError, sqlite3.Error) as e:
            logger.error(f"数据库打开失败: {e}")
            raise StorageOpenError(f"无法打开词库 {self.db_path}: {e}", path=self.db_path) from e

        try:
            with self._conn:
                for statement in SCHEMA:
                    self._conn.execute(statement)
        except sqlite3.Error as e:
            logger.error(f"建表失败: {e}")
            raise SchemaError(f"词库表结构创建失败: {e}") from e

        if not self._load_system_dictionary():
            logger.warning("系统词库加载失败，使用空词库继续")

        logger.info("✓ 词库初始化完成")
        return True

    def shutdown(self):
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def _load_system_dictionary(self) -> bool:
        sql = "INSERT OR IGNORE INTO words (word, pinyin, frequency, is_user_word) VALUES (?, ?, ?, 0)"
        try:
            with self._conn:
                self._conn.executemany(
                    sql, [(word, pinyin, SYSTEM_WORD_FREQUENCY) for word, pinyin in SYSTEM_VOCABULARY]
                )
        except sqlite3.Error as e:
            logger.error(f"写入系统词汇失败: {e}")
            return False
        return True

    # ===== 查询 =====

    def search_by_pinyin(self, pinyin: str, max_results: int = 10) -> CandidateList:
        """精确或前缀匹配（含去空格形式）"""
        if not pinyin:
            return []

        escaped = _escape_like(pinyin)
        compact = _escape_like(_compact(pinyin))
        sql = """
            SELECT word, pinyin, frequency
            FROM words
            WHERE pinyin = ? OR pinyin LIKE ? ESCAPE '\\' OR REPLACE(pinyin, ' ', '') LIKE ? ESCAPE '\\'
            ORDER BY frequency DESC, LENGTH(word) ASC
            LIMIT ?
        """
        return self._query_candidates(sql, (pinyin, escaped + "%", compact + "%", max_results), pinyin)

    def search_by_pinyin_sequence(self, pinyins: Sequence[str], max_results: int = 10) -> CandidateList:
        """音节序列以空格连接后查询，不做笛卡尔积展开"""
        if not pinyins:
            return []
        return self.search_by_pinyin(" ".join(pinyins), max_results)

    def fuzzy_search(self, partial_pinyin: str, max_results: int = 10) -> CandidateList:
        """子串匹配"""
        if not partial_pinyin:
            return []

        escaped = _escape_like(partial_pinyin)
        compact = _escape_like(_compact(partial_pinyin))
        sql = """
            SELECT word, pinyin, frequency
            FROM words
            WHERE pinyin LIKE ? ESCAPE '\\' OR REPLACE(pinyin, ' ', '') LIKE ? ESCAPE '\\'
            ORDER BY frequency DESC, LENGTH(word) ASC
            LIMIT ?
        """
        return self._query_candidates(
            sql, ("%" + escaped + "%", "%" + compact + "%", max_results), partial_pinyin
        )

    def _query_candidates(self, sql: str, params: tuple, query_pinyin: str) -> CandidateList:
        if self._conn is None or params[-1] <= 0:
            return []

        try:
            rows = self._conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            logger.error(f"查询失败: pinyin='{query_pinyin}', error={e}")
            return []

        return [
            Candidate(
                text=row["word"],
                pinyin=row["pinyin"],
                score=calculate_score(row["word"], row["pinyin"], row["frequency"], query_pinyin),
                frequency=row["frequency"],
                is_prediction=False,
            )
            for row in rows
        ]

    def get_word_info(self, word: str, pinyin: str) -> Optional[DictionaryEntry]:
        if self._conn is None:
            return None

        try:
            row = self._conn.execute(
                "SELECT word, pinyin, frequency, is_user_word, created_at, updated_at "
                "FROM words WHERE word = ? AND pinyin = ?",
                (word, pinyin),
            ).fetchone()
        except sqlite3.Error as e:
            logger.error(f"查询词条失败: {e}")
            return None

        if row is None:
            return None
        return DictionaryEntry(
            word=row["word"],
            pinyin=row["pinyin"],
            frequency=row["frequency"],
            is_user_word=bool(row["is_user_word"]),
            created_at=row["created_at"] or "",
            updated_at=row["updated_at"] or "",
        )

    def get_statistics(self) -> DictionaryStats:
        sql = """
            SELECT
                COUNT(*) AS total_words,
                COUNT(CASE WHEN is_user_word = 1 THEN 1 END) AS user_words,
                COUNT(CASE WHEN is_user_word = 0 THEN 1 END) AS system_words,
                AVG(frequency) AS avg_frequency
            FROM words
        """
        if self._conn is None:
            return DictionaryStats()

        try:
            row = self._conn.execute(sql).fetchone()
        except sqlite3.Error as e:
            logger.error(f"统计查询失败: {e}")
            return DictionaryStats()

        return DictionaryStats(
            total_words=row["total_words"],
            user_words=row["user_words"],
            system_words=row["system_words"],
            avg_frequency=float(row["avg_frequency"] or 0.0),
        )

    # ===== 写入 =====

    def _execute(self, sql: str, params: tuple, action: str) -> Optional[int]:
        """执行写语句，返回受影响行数；失败返回 None"""
        if self._conn is None:
            return None
        try:
            with self._conn:
                cursor = self._conn.execute(sql, params)
        except sqlite3.Error as e:
            logger.error(f"{action}失败: {e}")
            return None
        return cursor.rowcount

    def add_user_word(self, word: str, pinyin: str, frequency: int = 1) -> bool:
        """新增或覆盖（同键系统词会被改写为用户词）"""
        sql = """
            INSERT INTO words (word, pinyin, frequency, is_user_word) VALUES (?, ?, ?, 1)
            ON CONFLICT(word, pinyin) DO UPDATE SET
                frequency = excluded.frequency,
                is_user_word = 1,
                updated_at = CURRENT_TIMESTAMP
        """
        if not word or not pinyin:
            return False
        if self._execute(sql, (word, pinyin, max(0, int(frequency))), "添加用户词") is None:
            return False
        logger.debug(f"添加用户词: {word} ({pinyin})")
        return True

    def update_word_frequency(self, word: str, pinyin: str) -> bool:
        """词频 +1；词条不存在时静默忽略"""
        sql = (
            "UPDATE words SET frequency = frequency + 1, updated_at = CURRENT_TIMESTAMP "
            "WHERE word = ? AND pinyin = ?"
        )
        return self._execute(sql, (word, pinyin), "更新词频") is not None

    def remove_user_word(self, word: str, pinyin: str) -> bool:
        """只删除用户词，系统词不受影响"""
        sql = "DELETE FROM words WHERE word = ? AND pinyin = ? AND is_user_word = 1"
        return self._execute(sql, (word, pinyin), "删除用户词") is not None

    def learn_user_input(self, text: str, pinyin_sequence: Sequence[str]) -> bool:
        """把整段提交文本作为一个用户词学习"""
        if not text or not pinyin_sequence:
            return False
        return self.add_user_word(text, " ".join(pinyin_sequence), 1)

    def cleanup_low_frequency_words(self, min_frequency: int = 1) -> int:
        """删除词频低于阈值的用户词，返回删除数量"""
        deleted = self._execute(
            "DELETE FROM words WHERE is_user_word = 1 AND frequency < ?",
            (min_frequency,),
            "清理低频词",
        )
        if deleted is None:
            return 0
        logger.info(f"清理低频用户词 {deleted} 个")
        return deleted

    # ===== 导入导出 =====

    @staticmethod
    def parse_dictionary_lines(lines: Iterable[str]) -> List[Tuple[str, str, int]]:
        """
        解析 "词 拼音... 词频" 格式

        拼音可含空格（多音节），最后一列为词频；格式错误的行直接跳过
        """
        entries = []
        for line in lines:
            parts = line.split()
            if len(parts) < 3:
                continue
            try:
                frequency = int(parts[-1])
            except ValueError:
                continue
            if frequency < 0:
                continue
            entries.append((parts[0], " ".join(parts[1:-1]), frequency))
        return entries

    def import_dictionary(self, file_path: str, fmt: str = "txt") -> bool:
        if fmt != "txt":
            logger.error(f"不支持的词库格式: {fmt}")
            return False

        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                entries = self.parse_dictionary_lines(f)
        except OSError as e:
            logger.error(f"无法打开词库文件 {file_path}: {e}")
            return False

        imported = sum(1 for word, pinyin, freq in entries if self.add_user_word(word, pinyin, freq))
        logger.info(f"从 {file_path} 导入 {imported} 个词")
        return imported > 0

    def export_user_dictionary(self, file_path: str, fmt: str = "txt") -> bool:
        if fmt != "txt":
            logger.error(f"不支持的导出格式: {fmt}")
            return False
        if self._conn is None:
            return False

        try:
            rows = self._conn.execute(
                "SELECT word, pinyin, frequency FROM words WHERE is_user_word = 1 ORDER BY frequency DESC"
            ).fetchall()
        except sqlite3.Error as e:
            logger.error(f"导出查询失败: {e}")
            return False

        try:
            with open(file_path, 'w', encoding='utf-8') as f:
                for row in rows:
                    f.write(f"{row['word']} {row['pinyin']} {row['frequency']}\n")
        except OSError as e:
            logger.error(f"无法写入导出文件 {file_path}: {e}")
            return False

        logger.info(f"导出 {len(rows)} 个用户词到 {file_path}")
        return len(rows) > 0
