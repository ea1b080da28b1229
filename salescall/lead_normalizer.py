"""
リード正規化モジュール (Lead Normalization Module)

Fireberry API のレスポンスを Lead モデルに変換します。
"""

from typing import Any, Dict, Optional

from .crm_fields import LEAD_READ_FIELDS, RECORD_ENVELOPE_PATHS, RECORD_ID_FIELD
from .models import Lead


def _find_record(raw: Any) -> Dict[str, Any]:
    """
    レスポンスの中からレコード本体を探す

    API のバージョンによってレコードが data.Record, data, record, fields
    のいずれかに格納されるため、順番に調べて最初に見つかったものを使用します。
    """
    for path in RECORD_ENVELOPE_PATHS:
        node = raw
        for key in path:
            node = node.get(key) if isinstance(node, dict) else None
            if node is None:
                break
        if isinstance(node, dict):
            return node
    return {}


def _field_value(value: Any) -> str:
    """フィールド値を文字列に変換（ルックアップ項目は表示値を使用）"""
    if value is None:
        return ""
    if isinstance(value, dict):
        for key in ("name", "value", "label"):
            if value.get(key):
                return str(value[key])
        return ""
    return str(value)


def normalize_lead(raw: Any, fallback_id: Optional[str] = None) -> Lead:
    """
    Fireberry のレスポンスを Lead に正規化

    Args:
        raw: Fireberry API のレスポンス本体
        fallback_id: 呼び出し側が指定したレコード ID（優先して使用）

    Returns:
        Lead: 欠落項目が空文字列で埋められたリード
    """
    record = _find_record(raw)

    attributes = {
        attribute: _field_value(record.get(vendor_field))
        for vendor_field, attribute in LEAD_READ_FIELDS.items()
    }
    record_id = fallback_id or _field_value(record.get(RECORD_ID_FIELD))

    return Lead(record_id=record_id, **attributes)
