"""
設定管理モジュール (Configuration Management Module)

環境変数からアプリケーション設定を読み込み、検証を行います。
"""

from dataclasses import dataclass, field
import os


class ConfigurationError(Exception):
    """設定エラー例外クラス"""
    pass


def _env_flag(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).lower() in ("true", "1", "yes")


@dataclass
class Config:
    """
    アプリケーション設定

    環境変数から設定を読み込み、必須設定のバリデーションを行います。
    """
    # API 認証情報 (必須)
    fireberry_api_key: str
    vapi_api_key: str
    vapi_assistant_id: str
    vapi_phone_number_id: str

    # 接続先設定
    fireberry_base_url: str = "https://api.fireberry.com/api"
    fireberry_object_type: str = "1"
    vapi_base_url: str = "https://api.vapi.ai"

    # Webhook 検証設定
    webhook_secret: str = ""
    verify_webhook_signature: bool = False

    # 外部 API のタイムアウト（秒）
    http_timeout_seconds: float = 15.0

    # 終了済み通話レコードの保持時間
    call_record_ttl_hours: float = 24.0

    # ロギング設定
    log_level: str = "INFO"

    DEFAULT_LOG_LEVEL: str = field(default="INFO", init=False, repr=False)
    DEFAULT_HTTP_TIMEOUT_SECONDS: float = field(default=15.0, init=False, repr=False)
    DEFAULT_CALL_RECORD_TTL_HOURS: float = field(default=24.0, init=False, repr=False)

    @classmethod
    def from_env(cls) -> 'Config':
        """
        環境変数から設定を読み込む

        必須の環境変数:
            - FIREBERRY_API_KEY: Fireberry API トークン
            - VAPI_API_KEY: Vapi API キー
            - VAPI_ASSISTANT_ID: Vapi アシスタント ID
            - VAPI_PHONE_NUMBER_ID: 発信元電話番号 ID

        オプションの環境変数:
            - FIREBERRY_BASE_URL / FIREBERRY_OBJECT_TYPE
            - VAPI_BASE_URL
            - WEBHOOK_SECRET: Webhook 共有シークレット
            - VERIFY_WEBHOOK_SIGNATURE: 署名検証の有効化 (デフォルト: false)
            - HTTP_TIMEOUT_SECONDS: 外部 API タイムアウト (デフォルト: 15)
            - CALL_RECORD_TTL_HOURS: 終了済み通話の保持時間 (デフォルト: 24)
            - LOG_LEVEL: ログレベル (デフォルト: INFO)

        Returns:
            Config: 設定オブジェクト

        Raises:
            ConfigurationError: 必須設定が欠落している、または数値が不正な場合
        """
        try:
            http_timeout_seconds = float(os.environ.get("HTTP_TIMEOUT_SECONDS", "15"))
            call_record_ttl_hours = float(os.environ.get("CALL_RECORD_TTL_HOURS", "24"))
        except ValueError as e:
            raise ConfigurationError(f"数値設定の形式が不正です: {e}") from e

        config = cls(
            fireberry_api_key=os.environ.get("FIREBERRY_API_KEY", ""),
            vapi_api_key=os.environ.get("VAPI_API_KEY", ""),
            vapi_assistant_id=os.environ.get("VAPI_ASSISTANT_ID", ""),
            vapi_phone_number_id=os.environ.get("VAPI_PHONE_NUMBER_ID", ""),
            fireberry_base_url=os.environ.get("FIREBERRY_BASE_URL", "https://api.fireberry.com/api"),
            fireberry_object_type=os.environ.get("FIREBERRY_OBJECT_TYPE", "1"),
            vapi_base_url=os.environ.get("VAPI_BASE_URL", "https://api.vapi.ai"),
            webhook_secret=os.environ.get("WEBHOOK_SECRET", ""),
            verify_webhook_signature=_env_flag("VERIFY_WEBHOOK_SIGNATURE"),
            http_timeout_seconds=http_timeout_seconds,
            call_record_ttl_hours=call_record_ttl_hours,
            log_level=os.environ.get("LOG_LEVEL", "INFO"),
        )

        # バリデーション実行
        config.validate()

        return config

    def validate(self) -> None:
        """
        設定の妥当性を検証

        Raises:
            ConfigurationError: 必須設定が欠落または無効な場合
        """
        missing_fields = []

        if not self.fireberry_api_key:
            missing_fields.append("FIREBERRY_API_KEY")
        if not self.vapi_api_key:
            missing_fields.append("VAPI_API_KEY")
        if not self.vapi_assistant_id:
            missing_fields.append("VAPI_ASSISTANT_ID")
        if not self.vapi_phone_number_id:
            missing_fields.append("VAPI_PHONE_NUMBER_ID")

        if missing_fields:
            error_message = (
                f"必須の設定が欠落しています。以下の環境変数を設定してください: "
                f"{', '.join(missing_fields)}"
            )
            raise ConfigurationError(error_message)

        if self.http_timeout_seconds <= 0:
            raise ConfigurationError(
                f"HTTP_TIMEOUT_SECONDS は正の数である必要があります: {self.http_timeout_seconds}"
            )

        if self.call_record_ttl_hours <= 0:
            raise ConfigurationError(
                f"CALL_RECORD_TTL_HOURS は正の数である必要があります: {self.call_record_ttl_hours}"
            )

        # 署名検証を有効にする場合はシークレットが必須
        if self.verify_webhook_signature and not self.webhook_secret:
            raise ConfigurationError(
                "VERIFY_WEBHOOK_SIGNATURE を有効にするには WEBHOOK_SECRET が必要です"
            )

        valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.log_level.upper() not in valid_log_levels:
            raise ConfigurationError(
                f"LOG_LEVEL は {valid_log_levels} のいずれかである必要があります: {self.log_level}"
            )
