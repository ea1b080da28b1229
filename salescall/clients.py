"""
外部 API クライアントモジュール (Upstream API Clients Module)

Fireberry CRM と Vapi の REST API を呼び出すクライアントを提供します。
"""

from typing import Any, Dict, Optional

import requests


class UpstreamAPIError(Exception):
    """
    外部 API エラー

    外部 API が成功以外の HTTP ステータスを返した場合に発生します。

    Attributes:
        message: エラーメッセージ
        status_code: 外部 API が返した HTTP ステータスコード
        body: レスポンス本文
    """

    def __init__(self, message: str, status_code: int = 502, body: str = ""):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.body = body


class FireberryClient:
    """
    Fireberry CRM クライアント

    Attributes:
        api_key: Fireberry API トークン (tokenid ヘッダー)
        base_url: API のベース URL
        object_type: レコードのオブジェクトタイプ
        timeout: リクエストのタイムアウト（秒）
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.fireberry.com/api",
        object_type: str = "1",
        timeout: float = 15.0,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.object_type = object_type
        self.timeout = timeout

    def _record_url(self, record_id: str) -> str:
        return f"{self.base_url}/record/{self.object_type}/{record_id}"

    def _headers(self) -> Dict[str, str]:
        return {"tokenid": self.api_key, "Content-Type": "application/json"}

    def get_record(self, record_id: str) -> Dict[str, Any]:
        """
        レコードを取得

        Args:
            record_id: レコード ID

        Returns:
            Fireberry のレスポンス本体

        Raises:
            UpstreamAPIError: Fireberry が成功以外のステータスを返した場合
            requests.RequestException: 通信に失敗した場合
        """
        response = requests.get(
            self._record_url(record_id),
            headers=self._headers(),
            timeout=self.timeout,
        )
        if not response.ok:
            raise UpstreamAPIError(
                f"Fireberry returned {response.status_code}",
                status_code=response.status_code,
                body=response.text,
            )
        return response.json()

    def update_record(self, record_id: str, fields: Dict[str, Any]) -> str:
        """
        レコードを部分更新

        Args:
            record_id: レコード ID
            fields: 更新するフィールド

        Returns:
            レスポンス本文

        Raises:
            UpstreamAPIError: Fireberry が成功以外のステータスを返した場合
            requests.RequestException: 通信に失敗した場合
        """
        response = requests.patch(
            self._record_url(record_id),
            headers=self._headers(),
            json=fields,
            timeout=self.timeout,
        )
        if not response.ok:
            raise UpstreamAPIError(
                f"Fireberry update failed ({response.status_code})",
                status_code=response.status_code,
                body=response.text,
            )
        return response.text


class VapiClient:
    """
    Vapi クライアント

    Attributes:
        api_key: Vapi API キー (Bearer 認証)
        assistant_id: 使用するアシスタント ID
        phone_number_id: 発信元電話番号 ID
        base_url: API のベース URL
        timeout: リクエストのタイムアウト（秒）
    """

    def __init__(
        self,
        api_key: str,
        assistant_id: str,
        phone_number_id: str,
        base_url: str = "https://api.vapi.ai",
        timeout: float = 15.0,
    ):
        self.api_key = api_key
        self.assistant_id = assistant_id
        self.phone_number_id = phone_number_id
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def create_call(
        self,
        customer_number: str,
        customer_name: str,
        assistant_overrides: Dict[str, Any],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        発信通話を作成

        metadata は end-of-call-report Webhook でそのまま返されます。

        Args:
            customer_number: 発信先番号（国際形式）
            customer_name: 発信先の氏名
            assistant_overrides: アシスタントのオーバーライド
            metadata: 通話に添付するメタデータ

        Returns:
            Vapi のレスポンス本体（id を含む）

        Raises:
            UpstreamAPIError: Vapi が成功以外のステータスを返した場合
            requests.RequestException: 通信に失敗した場合
        """
        payload = {
            "assistantId": self.assistant_id,
            "phoneNumberId": self.phone_number_id,
            "assistantOverrides": assistant_overrides,
            "customer": {"number": customer_number, "name": customer_name},
            "metadata": metadata or {},
        }
        response = requests.post(
            f"{self.base_url}/call/phone",
            headers=self._headers(),
            json=payload,
            timeout=self.timeout,
        )
        if not response.ok:
            raise UpstreamAPIError(
                f"Vapi error: {response.text}",
                status_code=response.status_code,
                body=response.text,
            )
        return response.json()

    def get_call(self, call_id: str) -> Dict[str, Any]:
        """
        通話の現在の状態を取得

        Raises:
            UpstreamAPIError: Vapi が成功以外のステータスを返した場合
            requests.RequestException: 通信に失敗した場合
        """
        response = requests.get(
            f"{self.base_url}/call/{call_id}",
            headers={"Authorization": f"Bearer {self.api_key}"},
            timeout=self.timeout,
        )
        if not response.ok:
            raise UpstreamAPIError(
                f"Vapi returned {response.status_code}",
                status_code=response.status_code,
                body=response.text,
            )
        return response.json()
