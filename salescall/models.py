"""
データモデルモジュール (Data Models Module)

リードと通話レコードのデータモデルを定義します。
"""

from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, Optional


class CallStatus:
    """
    通話ライフサイクルのステータス

    initiated → ringing → in-progress → ended の順に進みます。
    UNKNOWN はレスポンス専用の疑似ステータスで、ストアには保存されません。
    """
    INITIATED = "initiated"
    RINGING = "ringing"
    IN_PROGRESS = "in-progress"
    ENDED = "ended"
    UNKNOWN = "unknown"


# Vapi のステータス語彙 → 内部ステータス
PROVIDER_STATUS_MAP: Dict[str, str] = {
    "queued": CallStatus.INITIATED,
    "ringing": CallStatus.RINGING,
    "in-progress": CallStatus.IN_PROGRESS,
    "forwarding": CallStatus.IN_PROGRESS,
    "ended": CallStatus.ENDED,
}


def map_provider_status(provider_status: Optional[str]) -> Optional[str]:
    """未知のステータスはそのまま返す"""
    return PROVIDER_STATUS_MAP.get(provider_status, provider_status)


_LEAD_JSON_NAMES = {
    "record_id": "recordId",
    "status_detail": "statusDetail",
    "sub_status": "subStatus",
    "whatsapp_url": "whatsappUrl",
}


@dataclass(frozen=True)
class Lead:
    """
    リードデータモデル

    CRM レコードから正規化された見込み客の情報です。
    すべての属性は文字列で、欠落している値は空文字列になります。

    Attributes:
        record_id: CRM レコード ID
        name: 氏名
        phone: 電話番号（未正規化）
        email: メールアドレス
        campaign: キャンペーン名
        adset: 広告セット
        status: CRM ステータス
        status_detail: ステータス詳細
        sub_status: サブステータス
        city: 都市
        source: 流入元 (Facebook / Google など)
        whatsapp_url: WhatsApp リンク
        company: 会社名
    """
    record_id: str = ""
    name: str = ""
    phone: str = ""
    email: str = ""
    campaign: str = ""
    adset: str = ""
    status: str = ""
    status_detail: str = ""
    sub_status: str = ""
    city: str = ""
    source: str = ""
    whatsapp_url: str = ""
    company: str = ""

    def to_dict(self) -> Dict[str, str]:
        """API レスポンス用に camelCase の辞書へ変換"""
        return {_LEAD_JSON_NAMES.get(k, k): v for k, v in asdict(self).items()}


# 通話開始時に固定されるスナップショット項目
SNAPSHOT_FIELDS = ("lead_name", "phone", "campaign", "city", "started_at")

# 通話終了時に一度だけ設定される結果項目
OUTCOME_FIELDS = (
    "outcome",
    "interest_level",
    "main_objection",
    "customer_background",
    "summary",
    "duration_seconds",
    "whatsapp_sent",
    "has_bdi_issue",
    "ended_at",
)

_CALL_JSON_NAMES = {
    "call_id": "callId",
    "record_id": "recordId",
    "lead_name": "leadName",
    "started_at": "startedAt",
    "interest_level": "interestLevel",
    "main_objection": "mainObjection",
    "customer_background": "customerBackground",
    "duration_seconds": "durationSeconds",
    "whatsapp_sent": "whatsappSent",
    "has_bdi_issue": "hasBDIIssue",
    "ended_at": "endedAt",
}


@dataclass(frozen=True)
class CallRecord:
    """
    通話レコードデータモデル

    1 件の発信通話のライフサイクル状態です。Vapi が採番した call_id をキーに
    CallStore が所有します。レコードは不変で、更新は常にレコード全体の
    置き換えとして行われます。

    Attributes:
        call_id: Vapi 通話 ID
        record_id: 元の CRM レコード ID（不明な場合は None）
        status: 通話ステータス (CallStatus)
        lead_name / phone / campaign / city / started_at: 通話開始時のスナップショット
        outcome 以降: 通話終了時に Webhook から設定される結果項目
    """
    call_id: str
    status: str
    record_id: Optional[str] = None
    lead_name: Optional[str] = None
    phone: Optional[str] = None
    campaign: Optional[str] = None
    city: Optional[str] = None
    started_at: Optional[str] = None
    outcome: Optional[str] = None
    interest_level: Optional[str] = None
    main_objection: Optional[str] = None
    customer_background: Optional[str] = None
    summary: Optional[str] = None
    duration_seconds: Optional[int] = None
    whatsapp_sent: Optional[bool] = None
    has_bdi_issue: Optional[bool] = None
    ended_at: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status == CallStatus.ENDED

    def to_dict(self) -> Dict[str, Any]:
        """API レスポンス用の辞書（未設定の項目は含めない）"""
        return {
            _CALL_JSON_NAMES.get(f.name, f.name): getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not None
        }
