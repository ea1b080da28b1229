"""
通話結果マッピングモジュール (Outcome Mapper Module)

Vapi の通話後分析で得られた結果コードを Fireberry のステータス・ステータス詳細と
メモ本文に変換します。
"""

from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, Optional, Tuple

from .crm_fields import WRITE_NOTE_FIELD, WRITE_STATUS_DETAIL_FIELD, WRITE_STATUS_FIELD

STATUS_ENROLLED = "נרשם"
STATUS_JUNGLE = "הועבר לג'ונגל"
STATUS_NOT_RELEVANT = "לא רלוונטי"
STATUS_NOT_HANDLED = "טרם טופל"

# 結果コード → (ステータス, ステータス詳細)
# CRM 上で実際に表示されているヘブライ語のテキスト値
OUTCOME_STATUS_MAP: Dict[str, Tuple[str, str]] = {
    "ENROLLED": (STATUS_ENROLLED, "עבר תשלום ראשון בהצלחה"),
    "WHATSAPP_SENT_INTERESTED": (STATUS_JUNGLE, "ליד רלוונטי – נשלח WhatsApp"),
    "CALLBACK_REQUESTED": (STATUS_JUNGLE, "ליד רלוונטי – ביקש חזרה"),
    "FINANCIAL_BLOCKER": (STATUS_JUNGLE, "בעיית BDI/אשראי – דרוש נציג אנושי"),
    "NOT_INTERESTED": (STATUS_NOT_RELEVANT, "לא מעוניין"),
    "NO_ANSWER": (STATUS_NOT_HANDLED, "לא ענה – ממתין לחיוג חוזר"),
    "WRONG_NUMBER": (STATUS_NOT_RELEVANT, "ליד כפול / מספר שגוי"),
}

UNKNOWN_INTEREST = "לא ידוע"


@dataclass(frozen=True)
class OutcomeMapping:
    """
    結果コードのマッピング結果

    Attributes:
        crm_status: Fireberry ステータス（未知の結果コードの場合は None）
        crm_status_detail: ステータス詳細
        note: メモ欄に書き込む本文
    """
    crm_status: Optional[str]
    crm_status_detail: Optional[str]
    note: str

    def to_crm_patch(self) -> Dict[str, Any]:
        """Fireberry PATCH 用のリクエストボディを作成"""
        body: Dict[str, Any] = {}
        if self.crm_status:
            body[WRITE_STATUS_FIELD] = self.crm_status
        if self.crm_status_detail:
            body[WRITE_STATUS_DETAIL_FIELD] = self.crm_status_detail
        body[WRITE_NOTE_FIELD] = self.note
        return body


def format_duration(duration_seconds: Optional[int]) -> str:
    """秒数を m:ss 形式に変換 (125 → "2:05")"""
    total = int(duration_seconds or 0)
    minutes, seconds = divmod(total, 60)
    return f"{minutes}:{seconds:02d}"


def format_note_date(day: date) -> str:
    """he-IL ロケールの日付表記 (d.m.yyyy)"""
    return f"{day.day}.{day.month}.{day.year}"


def build_note(
    outcome: str,
    interest_level: Optional[str],
    main_objection: Optional[str],
    has_bdi_issue: bool,
    whatsapp_sent: bool,
    summary: Optional[str],
    duration_seconds: Optional[int],
    today: Optional[date] = None,
) -> str:
    """
    CRM のメモ本文を作成

    任意項目（主な反論、BDI 警告、WhatsApp 送信、要約）は値がある場合のみ出力し、
    省略した項目は空行を残しません。
    """
    today = today or date.today()
    lines = [
        f"📞 שיחת AI – {format_note_date(today)}",
        f"⏱ משך: {format_duration(duration_seconds)} דקות",
        f"🎯 תוצאה: {outcome}",
        f"⭐ רמת עניין: {interest_level or UNKNOWN_INTEREST}",
    ]
    if main_objection:
        lines.append(f"🚧 התנגדות עיקרית: {main_objection}")
    if has_bdi_issue:
        lines.append("⚠️ בעיית BDI/אשראי – נדרש בירור")
    if whatsapp_sent:
        lines.append("✅ WhatsApp נשלח")
    if summary:
        lines.append(f"\n📝 סיכום:\n{summary}")
    return "\n".join(lines)


def map_outcome(
    outcome: str,
    interest_level: Optional[str] = None,
    main_objection: Optional[str] = None,
    has_bdi_issue: bool = False,
    whatsapp_sent: bool = False,
    summary: Optional[str] = None,
    duration_seconds: Optional[int] = None,
    today: Optional[date] = None,
) -> OutcomeMapping:
    """
    結果コードを CRM の更新内容に変換

    未知の結果コードでもメモは必ず作成します。その場合ステータスは変更せず、
    ステータス詳細に結果コードをそのまま埋め込みます。

    Args:
        outcome: 結果コード (ENROLLED, NOT_INTERESTED など)
        interest_level: 関心度
        main_objection: 主な反論
        has_bdi_issue: BDI/与信の問題があるか
        whatsapp_sent: WhatsApp を送信したか
        summary: 通話の要約
        duration_seconds: 通話時間（秒）
        today: メモのヘッダーに使う日付（省略時は今日）

    Returns:
        OutcomeMapping
    """
    if outcome in OUTCOME_STATUS_MAP:
        crm_status, crm_status_detail = OUTCOME_STATUS_MAP[outcome]
    else:
        crm_status, crm_status_detail = None, f"AI call: {outcome}"

    note = build_note(
        outcome=outcome,
        interest_level=interest_level,
        main_objection=main_objection,
        has_bdi_issue=has_bdi_issue,
        whatsapp_sent=whatsapp_sent,
        summary=summary,
        duration_seconds=duration_seconds,
        today=today,
    )
    return OutcomeMapping(crm_status=crm_status, crm_status_detail=crm_status_detail, note=note)
