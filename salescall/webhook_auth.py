"""
Webhook 検証モジュール (Webhook Verification Module)

Vapi から届いた Webhook が共有シークレットを知る送信元からのものかを検証します。
VERIFY_WEBHOOK_SIGNATURE が有効な場合のみ使用されます。
"""

import hashlib
import hmac
from typing import Mapping

SECRET_HEADER = "X-Vapi-Secret"
SIGNATURE_HEADER = "X-Vapi-Signature"


def compute_signature(secret: str, body: bytes) -> str:
    """本文の HMAC-SHA256 署名（16 進数）を計算"""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_webhook(headers: Mapping[str, str], body: bytes, secret: str) -> bool:
    """
    Webhook リクエストを検証

    次のいずれかを満たす場合に有効と判定します。
        - X-Vapi-Secret ヘッダーが共有シークレットと一致する
        - X-Vapi-Signature ヘッダーが本文の HMAC-SHA256 署名と一致する
          ("sha256=" プレフィックス付きも可)

    Args:
        headers: リクエストヘッダー
        body: リクエスト本文（生バイト列）
        secret: 共有シークレット

    Returns:
        検証に成功した場合は True
    """
    if not secret:
        return False

    provided_secret = headers.get(SECRET_HEADER, "")
    if provided_secret and hmac.compare_digest(provided_secret, secret):
        return True

    signature = headers.get(SIGNATURE_HEADER, "")
    if signature.startswith("sha256="):
        signature = signature[len("sha256="):]
    if signature:
        return hmac.compare_digest(signature, compute_signature(secret, body))

    return False
