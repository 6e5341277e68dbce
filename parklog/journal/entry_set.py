from __future__ import annotations

import threading
from collections.abc import Iterable, Mapping

from parklog.journal.models import JournalEntry


class EntrySet:
    """
    当前会话里“正在展示”的 entry 集合。

    - 保持加载顺序（新建的 entry 插到最前面）
    - `apply_image_urls` 一次性替换多条 entry 的 image_url，读者只会看到完整快照
    - 除 image_url 以外的字段不会被缓存逻辑改动
    """

    def __init__(self, entries: Iterable[JournalEntry] = ()) -> None:
        self._lock = threading.Lock()
        self._entries: list[JournalEntry] = list(entries)

    def snapshot(self) -> list[JournalEntry]:
        with self._lock:
            return list(self._entries)

    def get(self, entry_id: str) -> JournalEntry | None:
        with self._lock:
            for entry in self._entries:
                if entry.id == entry_id:
                    return entry
        return None

    def replace(self, entries: Iterable[JournalEntry]) -> None:
        new_entries = list(entries)
        with self._lock:
            self._entries = new_entries

    def prepend(self, entry: JournalEntry) -> None:
        with self._lock:
            self._entries = [entry] + [e for e in self._entries if e.id != entry.id]

    def remove(self, entry_id: str) -> JournalEntry | None:
        with self._lock:
            for index, entry in enumerate(self._entries):
                if entry.id == entry_id:
                    del self._entries[index]
                    return entry
        return None

    def apply_image_urls(self, urls_by_id: Mapping[str, str]) -> int:
        """批量写回 image_url，返回实际更新的条数。"""
        if not urls_by_id:
            return 0
        updated = 0
        with self._lock:
            next_entries: list[JournalEntry] = []
            for entry in self._entries:
                url = urls_by_id.get(entry.id)
                if url is not None:
                    next_entries.append(entry.model_copy(update={"image_url": url}))
                    updated += 1
                else:
                    next_entries.append(entry)
            self._entries = next_entries
        return updated

    def keyed_entries(self) -> list[JournalEntry]:
        """带 object key（image_path）的 entry。"""
        return [entry for entry in self.snapshot() if entry.has_image]

    def has_object_keys(self) -> bool:
        return bool(self.keyed_entries())

    def object_key_in_use(self, object_key: str) -> bool:
        return any(entry.image_path == object_key for entry in self.snapshot())

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
