"""
通話コンテキスト構築モジュール (Call Context Builder Module)

リード情報から Vapi アシスタントのオーバーライドを構築します。
システムプロンプト（ペルソナ、会話フロー）は Vapi ダッシュボード側で管理されているため、
model.messages は決して上書きせず、firstMessage と metadata のみを渡します。
"""

from typing import Any, Dict, Optional

UNKNOWN_VALUE = "לא ידוע"
DEFAULT_CRM_STATUS = "חדש"

GREETING_WITH_NAME = "ألو، معي {first_name}؟"
GREETING_WITHOUT_NAME = "ألو، مين معي؟"

# (キーワード, ヒント) の優先順リスト
COURSE_HINTS = (
    (("bdo",), "הליד הגיע מקמפיין BDO – ייתכן רקע בראיית חשבון/כספים. שאל על עבודתו הנוכחית."),
    (("qa", "בדיקות"), "הליד הגיע מקמפיין QA – כוון לקורס QA Automation."),
    (("full stack", "fullstack"), "הליד הגיע מקמפיין Full Stack – כוון לקורס Full Stack."),
)

CONTEXT_BLOCK_HEADER = "═══ מידע על הליד (הוזן אוטומטית לפני השיחה) ═══"
CONTEXT_BLOCK_FOOTER = "═══════════════════════════════════════════════"


def extract_first_name(name: Optional[str]) -> str:
    """氏名の最初のトークンを名として返す（アラビア語・ヘブライ語の氏名にも対応）"""
    parts = (name or "").split()
    return parts[0] if parts else ""


def detect_course_hint(campaign: Optional[str], company: Optional[str]) -> str:
    """
    キャンペーン名と会社名からコースのヒントを判定

    大文字小文字を区別せずに部分一致で検索し、
    BDO（会計・財務）→ QA → Full Stack の優先順で最初に一致したものを返します。
    会社名は BDO の判定にのみ、キャンペーン名が空の場合に限って使用します。
    """
    campaign_text = (campaign or "").lower()
    bdo_text = (campaign or company or "").lower()
    # COURSE_HINTS の先頭が BDO
    for index, (keywords, hint) in enumerate(COURSE_HINTS):
        text = bdo_text if index == 0 else campaign_text
        if any(keyword in text for keyword in keywords):
            return hint
    return ""


def build_greeting(first_name: str) -> str:
    if first_name:
        return GREETING_WITH_NAME.format(first_name=first_name)
    return GREETING_WITHOUT_NAME


def build_context_block(
    name: str,
    first_name: str,
    city: str,
    campaign: str,
    adset: str,
    source: str,
    status: str,
    status_detail: str,
    whatsapp_url: str,
    course_hint: str,
) -> str:
    """アシスタント向けのリード情報ブロックを作成"""
    lines = [
        CONTEXT_BLOCK_HEADER,
        f"שם מלא:    {name or UNKNOWN_VALUE}",
        f"שם פרטי:   {first_name or UNKNOWN_VALUE}",
        f"עיר:       {city or UNKNOWN_VALUE}",
        f"קמפיין:    {campaign or UNKNOWN_VALUE}",
        f"Ad Set:    {adset or UNKNOWN_VALUE}",
        f"מקור:      {source or UNKNOWN_VALUE}",
        f"סטטוס CRM: {status or DEFAULT_CRM_STATUS}",
    ]
    if status_detail:
        lines.append(f"פירוט:     {status_detail}")
    if whatsapp_url:
        lines.append(f"WhatsApp:  {whatsapp_url}  (שלח לאחר גיבוש עניין)")
    if course_hint:
        lines.append(f"💡 רמז:    {course_hint}")
    lines.append(CONTEXT_BLOCK_FOOTER)
    return "\n".join(lines)


def build_assistant_overrides(
    name: Optional[str] = None,
    campaign: Optional[str] = None,
    adset: Optional[str] = None,
    status: Optional[str] = None,
    status_detail: Optional[str] = None,
    city: Optional[str] = None,
    source: Optional[str] = None,
    company: Optional[str] = None,
    whatsapp_url: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Vapi の assistantOverrides を構築

    Args:
        name: 氏名
        campaign: キャンペーン名
        adset: 広告セット
        status: CRM ステータス
        status_detail: ステータス詳細
        city: 都市
        source: 流入元
        company: 会社名
        whatsapp_url: WhatsApp リンク

    Returns:
        firstMessage と metadata のみを含む辞書
    """
    first_name = extract_first_name(name)
    course_hint = detect_course_hint(campaign, company)

    context_block = build_context_block(
        name=name or "",
        first_name=first_name,
        city=city or "",
        campaign=campaign or "",
        adset=adset or "",
        source=source or "",
        status=status or "",
        status_detail=status_detail or "",
        whatsapp_url=whatsapp_url or "",
        course_hint=course_hint,
    )

    return {
        "firstMessage": build_greeting(first_name),
        "metadata": {
            "leadName": name or "",
            "firstName": first_name,
            "campaign": campaign or "",
            "city": city or "",
            "source": source or "",
            "status": status or "",
            "statusDetail": status_detail or "",
            "adset": adset or "",
            "company": company or "",
            "whatsappUrl": whatsapp_url or "",
            "courseHint": course_hint,
            "contextBlock": context_block,
        },
    }
