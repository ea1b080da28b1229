"""
Fireberry フィールド定義モジュール (CRM Field Contract Module)

Fireberry API のフィールド名と Lead 属性の対応表です。
フィールド名はベンダー側の実データ (2026年2月確認) に合わせています。
pcfCampign のようなベンダー側の綴り誤りも、そのまま保持する必要があります。
"""

from typing import Dict, Tuple

# 読み取り側: Fireberry フィールド名 → Lead 属性名
LEAD_READ_FIELDS: Dict[str, str] = {
    "accountname": "name",                   # 顧客名
    "telephone1": "phone",                   # メイン電話番号
    "emailaddress1": "email",                # メールアドレス
    "pcfCampign": "campaign",                # キャンペーン (綴りは Fireberry 側のまま)
    "pcfAdset": "adset",                     # 広告セット
    "status": "status",                      # ステータス
    "pcfStatusDetailsname": "status_detail", # ステータス詳細 (表示値)
    "pcfsystemfield3name": "sub_status",     # サブステータス
    "billingcity": "city",                   # 都市
    "pcfsystemfield27name": "source",        # 流入元
    "pcfsystemfield21": "whatsapp_url",      # WhatsApp リンク
    "pcfCompanyname": "company",             # 会社名
}

# レコード ID (GUID)
RECORD_ID_FIELD = "accountid"

# レスポンス内でレコード本体を探す順序
RECORD_ENVELOPE_PATHS: Tuple[Tuple[str, ...], ...] = (
    ("data", "Record"),
    ("data",),
    ("record",),
    ("fields",),
    (),
)

# 書き込み側: ルックアップ項目は表示用の "name" サフィックスなしで書き込む
WRITE_STATUS_FIELD = "status"
WRITE_STATUS_DETAIL_FIELD = "pcfStatusDetails"
WRITE_NOTE_FIELD = "description"
