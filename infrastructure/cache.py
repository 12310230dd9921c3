"""
缓存模块

提供查询向量的 TTL 缓存，减少重复的向量化调用。
"""

import hashlib
import logging
import threading
from typing import Dict, List, Optional

from cachetools import TTLCache

logger = logging.getLogger(__name__)


class EmbeddingCache:
    """向量缓存

    以 (模型, 文本) 为键缓存向量化结果。
    """

    def __init__(self, maxsize: int = 2000, ttl: int = 600):
        """初始化缓存

        Args:
            maxsize: 最大缓存条目数
            ttl: 缓存过期时间（秒）
        """
        self._cache = TTLCache(maxsize=maxsize, ttl=ttl)
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    @staticmethod
    def _generate_key(text: str, model: str) -> str:
        content = f"{model}:{text.strip().lower()}"
        return hashlib.md5(content.encode()).hexdigest()

    def get(self, text: str, model: str) -> Optional[List[float]]:
        key = self._generate_key(text, model)
        with self._lock:
            vector = self._cache.get(key)
            if vector is not None:
                self._hits += 1
                logger.debug(f"向量缓存命中: {key[:8]}...")
                return list(vector)
            self._misses += 1
            return None

    def set(self, text: str, model: str, vector: List[float]) -> None:
        key = self._generate_key(text, model)
        with self._lock:
            self._cache[key] = tuple(vector)

    def clear(self) -> int:
        with self._lock:
            count = len(self._cache)
            self._cache.clear()
            return count

    def stats(self) -> Dict:
        with self._lock:
            total = self._hits + self._misses
            return {
                "size": len(self._cache),
                "maxsize": self._cache.maxsize,
                "ttl": self._cache.ttl,
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": round(self._hits / total, 4) if total > 0 else 0
            }
