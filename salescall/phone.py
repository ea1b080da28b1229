"""
電話番号正規化モジュール (Phone Normalization Module)

イスラエルの電話番号を国際形式 (+972...) に変換します。
"""

import re
from typing import Optional

COUNTRY_CODE = "972"

_SEPARATORS = re.compile(r"[\s\-().]")
_LOCAL_WITH_TRUNK = re.compile(r"^0[5-9]")
_BARE_SUBSCRIBER = re.compile(r"^[5-9]\d{8}$")


def normalize_phone(raw: Optional[str]) -> Optional[str]:
    """
    電話番号を国際形式に正規化

    受け付ける形式:
        - +972XXXXXXXXX: そのまま返す
        - 972XXXXXXXXX: 先頭に + を付ける
        - 05XXXXXXXX: 先頭の 0 を +972 に置き換える
        - 5XXXXXXXX: 先頭に +972 を付ける

    Args:
        raw: 入力された電話番号

    Returns:
        正規化された番号、解析できない場合は None
    """
    if not raw:
        return None

    clean = _SEPARATORS.sub("", str(raw))

    if clean.startswith("+" + COUNTRY_CODE):
        return clean
    if clean.startswith(COUNTRY_CODE):
        return "+" + clean
    if _LOCAL_WITH_TRUNK.match(clean):
        return "+" + COUNTRY_CODE + clean[1:]
    if _BARE_SUBSCRIBER.match(clean):
        return "+" + COUNTRY_CODE + clean

    return None
