from __future__ import annotations
"""工具函式，提供檔案讀取與具時效的快取功能"""

import bz2
import gzip
import io
import logging
import math
import threading
import time
from collections import OrderedDict
from pathlib import Path
from typing import Any, Callable, Iterable, List, Optional

from .. import config

logger = logging.getLogger(__name__)


# ----- Helpers -----
class TTLCache:
    """具有存活時間的快取，過期項目在讀取時淘汰；以鎖保護可跨執行緒共用"""

    def __init__(self, ttl_seconds: float, clock: Optional[Callable[[], float]] = None) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock or time.monotonic
        self._data: "OrderedDict[Any, tuple]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: Any) -> Any:
        """取得快取值，若不存在或已過期則回傳 ``None``"""
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            stored_at, value = entry
            if self._clock() - stored_at > self.ttl_seconds:
                # 過期即刪除，下次查詢重新取得
                del self._data[key]
                return None
            return value

    def put(self, key: Any, value: Any) -> None:
        """放入快取並記錄存入時間"""
        with self._lock:
            self._data[key] = (self._clock(), value)
            self._data.move_to_end(key)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def __contains__(self, key: Any) -> bool:
        return self.get(key) is not None


def round_half_up(value: float) -> int:
    """四捨五入為整數，.5 一律進位"""

    return int(math.floor(value + 0.5))


def reputation_cache() -> TTLCache:
    """依設定建立信譽查詢用的快取 (預設 24 小時)"""

    return TTLCache(config.REPUTATION_CACHE_TTL_HOURS * 3600)


def open_log(path: Path) -> io.BufferedReader:
    """開啟一般或壓縮的日誌檔並回傳檔案物件"""

    if path.suffix == ".gz":
        return gzip.open(path, "rb")  # type: ignore
    if path.suffix == ".bz2":
        return bz2.open(path, "rb")  # type: ignore
    return path.open("rb")


def read_lines(path: Path) -> List[str]:
    """讀取整個日誌檔，非法位元組以替換字元解碼"""

    lines: List[str] = []
    with open_log(path) as f:
        for line_bytes in f:
            try:
                lines.append(line_bytes.decode("utf-8").rstrip("\r\n"))
            except UnicodeDecodeError:
                lines.append(line_bytes.decode("utf-8", "replace").rstrip("\r\n"))
    return lines


def discover_log_files(directory: Path, suffixes: Iterable[str] = ()) -> List[Path]:
    """列出目錄下符合副檔名的日誌檔，依檔名排序"""

    wanted = set(suffixes or config.LOG_FILE_SUFFIXES)
    if not directory.is_dir():
        logger.warning(f"Log directory {directory} does not exist")
        return []
    return sorted(p for p in directory.iterdir() if p.is_file() and p.suffix in wanted)
