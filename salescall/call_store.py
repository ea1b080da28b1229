"""
通話ストアモジュール (Call Store Module)

通話レコードの状態を管理するストアレイヤーを提供します。
ポーリングと Webhook の 2 つの経路からの更新を、通話 ID ごとに
1 件のレコードへマージします。
"""

import threading
import time
from abc import ABC, abstractmethod
from dataclasses import asdict, replace
from typing import Any, Callable, Dict, Optional

from .models import OUTCOME_FIELDS, SNAPSHOT_FIELDS, CallRecord, CallStatus


def merge_call_record(
    existing: Optional[CallRecord],
    call_id: str,
    changes: Dict[str, Any],
) -> CallRecord:
    """
    既存レコードに部分更新をマージした新しいレコードを返す

    マージ規則:
        - 値が None の項目は「指定なし」として扱い、既存値を保持する
        - UNKNOWN ステータスは保存しない
        - ENDED に到達した後はステータスを変更しない
        - スナップショット項目は一度設定されたら上書きしない
        - ENDED 後の結果項目は未設定のもののみ追加できる
        - その他の項目は後勝ち

    Args:
        existing: 現在のレコード（存在しない場合は None）
        call_id: 通話 ID
        changes: 更新する項目

    Returns:
        マージ後のレコード
    """
    updates = {k: v for k, v in changes.items() if v is not None}
    updates.pop("call_id", None)
    if updates.get("status") == CallStatus.UNKNOWN:
        del updates["status"]

    if existing is None:
        updates.setdefault("status", CallStatus.INITIATED)
        return CallRecord(call_id=call_id, **updates)

    current = asdict(existing)
    for name in SNAPSHOT_FIELDS:
        if current.get(name) is not None:
            updates.pop(name, None)

    if existing.is_terminal:
        updates.pop("status", None)
        for name in OUTCOME_FIELDS:
            if current.get(name) is not None:
                updates.pop(name, None)

    return replace(existing, **updates)


class CallStore(ABC):
    """
    通話ストアの抽象基底クラス

    通話レコードの保持を担当する抽象インターフェースを定義します。
    すべての書き込みはレコード全体の読み取り・マージ・置き換えとして行います。
    """

    @abstractmethod
    def get(self, call_id: str) -> Optional[CallRecord]:
        """
        通話 ID でレコードを取得

        Args:
            call_id: Vapi 通話 ID

        Returns:
            通話レコード、見つからない場合は None
        """
        pass

    @abstractmethod
    def create(self, record: CallRecord) -> CallRecord:
        """
        通話開始時のレコードを登録

        Webhook が先に届いてレコードが既に存在する場合は、
        既存のステータスを維持したままスナップショット項目を補完します。

        Args:
            record: INITIATED ステータスの通話レコード

        Returns:
            保存されたレコード
        """
        pass

    @abstractmethod
    def merge(self, call_id: str, **changes: Any) -> CallRecord:
        """
        部分更新をマージ

        レコードが存在しない場合は新規に作成します。

        Args:
            call_id: Vapi 通話 ID
            **changes: 更新する項目

        Returns:
            マージ後のレコード
        """
        pass

    @abstractmethod
    def evict_expired(self) -> int:
        """
        保持期間を過ぎたレコードを削除

        終了済みのレコードと、終了しないまま更新が途絶えたレコードが対象です。

        Returns:
            削除したレコード数
        """
        pass


class InMemoryCallStore(CallStore):
    """
    インメモリ実装

    プロセス内の辞書にレコードを保持します。プロセスの再起動で内容は失われます。
    通話 ID ごとのロックで読み取り・マージ・書き込みを直列化するため、
    異なる通話の更新は互いに干渉しません。
    """

    def __init__(
        self,
        ttl_seconds: float = 24 * 3600,
        clock: Callable[[], float] = time.monotonic,
        stale_seconds: Optional[float] = None,
    ):
        """
        InMemoryCallStore を初期化

        Args:
            ttl_seconds: 終了済みレコードを保持する秒数
            clock: 経過時間の計測に使用する時計
            stale_seconds: 終了しないまま更新が途絶えたレコードを保持する秒数
                （None の場合は ttl_seconds の 2 倍）
        """
        self.ttl_seconds = ttl_seconds
        self.stale_seconds = stale_seconds if stale_seconds is not None else ttl_seconds * 2
        self._clock = clock
        self._records: Dict[str, CallRecord] = {}
        self._ended_at_clock: Dict[str, float] = {}
        self._touched_at_clock: Dict[str, float] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._records)

    def _lock_for(self, call_id: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(call_id)
            if lock is None:
                lock = self._locks[call_id] = threading.Lock()
            return lock

    def _store(self, record: CallRecord) -> CallRecord:
        now = self._clock()
        self._records[record.call_id] = record
        self._touched_at_clock[record.call_id] = now
        if record.is_terminal and record.call_id not in self._ended_at_clock:
            self._ended_at_clock[record.call_id] = now
        return record

    def _is_expired(self, call_id: str, now: float) -> bool:
        ended = self._ended_at_clock.get(call_id)
        if ended is not None:
            return ended <= now - self.ttl_seconds
        touched = self._touched_at_clock.get(call_id)
        return touched is not None and touched <= now - self.stale_seconds

    def get(self, call_id: str) -> Optional[CallRecord]:
        return self._records.get(call_id)

    def create(self, record: CallRecord) -> CallRecord:
        with self._lock_for(record.call_id):
            existing = self._records.get(record.call_id)
            if existing is None:
                return self._store(record)
            changes = asdict(record)
            changes.pop("status")
            return self._store(merge_call_record(existing, record.call_id, changes))

    def merge(self, call_id: str, **changes: Any) -> CallRecord:
        with self._lock_for(call_id):
            merged = merge_call_record(self._records.get(call_id), call_id, changes)
            return self._store(merged)

    def evict_expired(self) -> int:
        """
        保持期間を過ぎたレコードを削除

        終了済みレコードは最初に ENDED になってから ttl_seconds 後に、
        終了していないレコードは最後の更新から stale_seconds 後に削除します。
        レコードと一緒に通話 ID のロックも破棄します。
        """
        now = self._clock()
        candidates = [
            call_id for call_id in list(self._records)
            if self._is_expired(call_id, now)
        ]
        evicted = 0
        for call_id in candidates:
            with self._lock_for(call_id):
                # ロック取得までの間に更新されていれば残す
                if not self._is_expired(call_id, now):
                    continue
                self._records.pop(call_id, None)
                self._ended_at_clock.pop(call_id, None)
                self._touched_at_clock.pop(call_id, None)
                with self._registry_lock:
                    self._locks.pop(call_id, None)
                evicted += 1
        return evicted
