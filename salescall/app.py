"""
Flask アプリケーションモジュール (Flask Application Module)

AI 営業通話サーバーの Flask アプリケーションを提供します。
API エンドポイント、Vapi Webhook、CORS、構造化ロギングを設定します。
"""

import logging
import sys
import traceback
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import requests
import structlog
from flask import Flask, Response, jsonify, request, send_from_directory

from .call_store import InMemoryCallStore
from .clients import FireberryClient, UpstreamAPIError, VapiClient
from .config import Config
from .orchestrator import CallLifecycleOrchestrator, CallValidationError
from .webhook_auth import verify_webhook

STATIC_DIR = Path(__file__).parent / "static"
BUTTON_PAGE = "ai_call_button.html"

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET,POST,PATCH,OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type,Authorization,X-Vapi-Secret,X-Vapi-Signature",
}


def configure_structlog(log_level: str = "INFO") -> None:
    """
    structlog を設定

    JSON フォーマットの構造化ロギングを設定します。
    すべてのログ出力は timestamp, level, event フィールドを含みます。

    Args:
        log_level: ログレベル (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            # ヘブライ語・アラビア語をエスケープせずに出力
            structlog.processors.JSONRenderer(ensure_ascii=False),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    """
    構造化ロガーを取得

    Args:
        name: ロガー名

    Returns:
        構造化ロガーインスタンス
    """
    return structlog.get_logger(name)


def validate_json_request(data: Any, required_fields: Optional[list] = None) -> Tuple[bool, Optional[str]]:
    """
    JSON リクエストを検証

    Args:
        data: 検証するデータ
        required_fields: 必須フィールドのリスト（オプション）

    Returns:
        (検証結果, エラーメッセージ) のタプル
    """
    if data is None:
        return False, "Invalid JSON: request body is empty or malformed"

    if not isinstance(data, dict):
        return False, "Invalid JSON: request body must be a JSON object"

    if required_fields:
        missing_fields = [field for field in required_fields if not data.get(field)]
        if missing_fields:
            return False, f"{', '.join(missing_fields)} is required"

    return True, None


def create_error_response(
    error_type: str,
    message: str,
    status_code: int,
    details: Optional[Dict[str, Any]] = None
) -> Tuple[Response, int]:
    """
    エラーレスポンスを作成

    Args:
        error_type: エラーの種類
        message: エラーメッセージ
        status_code: HTTP ステータスコード
        details: 追加の詳細情報（オプション）

    Returns:
        (JSON レスポンス, ステータスコード) のタプル
    """
    response_body = {
        "error": message,
        "error_type": error_type,
        "status_code": status_code
    }
    if details:
        response_body["details"] = details

    return jsonify(response_body), status_code


def create_app(
    config: Optional[Config] = None,
    orchestrator: Optional[CallLifecycleOrchestrator] = None,
) -> Flask:
    """
    Flask アプリケーションを作成

    Args:
        config: アプリケーション設定（None の場合は環境変数から読み込み）
        orchestrator: 通話ライフサイクル管理（None の場合は設定から構築）

    Returns:
        設定済みの Flask アプリケーション
    """
    app = Flask(__name__)

    # 設定を読み込み（テスト時は外部から注入可能）
    if config is None:
        config = Config.from_env()

    app.config["SALES_CALL_CONFIG"] = config

    configure_structlog(config.log_level)

    logger = get_logger(__name__)
    logger.info(
        "application_initialized",
        log_level=config.log_level,
        webhook_signature_verification=config.verify_webhook_signature,
    )

    if orchestrator is None:
        store = InMemoryCallStore(ttl_seconds=config.call_record_ttl_hours * 3600)
        crm_client = FireberryClient(
            api_key=config.fireberry_api_key,
            base_url=config.fireberry_base_url,
            object_type=config.fireberry_object_type,
            timeout=config.http_timeout_seconds,
        )
        voice_client = VapiClient(
            api_key=config.vapi_api_key,
            assistant_id=config.vapi_assistant_id,
            phone_number_id=config.vapi_phone_number_id,
            base_url=config.vapi_base_url,
            timeout=config.http_timeout_seconds,
        )
        orchestrator = CallLifecycleOrchestrator(store, crm_client, voice_client)

    app.config["ORCHESTRATOR"] = orchestrator
    app.config["CALL_STORE"] = orchestrator.store

    # ==========================================================================
    # CORS
    # ==========================================================================

    @app.before_request
    def handle_preflight():
        """OPTIONS リクエストは本文なしの 200 で即時に応答"""
        if request.method == "OPTIONS":
            return Response(status=200)
        return None

    @app.after_request
    def add_cors_headers(response: Response) -> Response:
        response.headers.update(CORS_HEADERS)
        return response

    # ==========================================================================
    # エラーハンドラー (Error Handlers)
    # ==========================================================================

    @app.errorhandler(404)
    def handle_not_found(error):
        logger.warning("not_found_error", path=request.path, method=request.method)
        return create_error_response(
            error_type="not_found",
            message=str(error.description) if hasattr(error, 'description') else "Not Found",
            status_code=404
        )

    @app.errorhandler(405)
    def handle_method_not_allowed(error):
        logger.warning(
            "method_not_allowed_error",
            path=request.path,
            method=request.method
        )
        return create_error_response(
            error_type="method_not_allowed",
            message=str(error.description) if hasattr(error, 'description') else "Method Not Allowed",
            status_code=405
        )

    @app.errorhandler(Exception)
    def handle_generic_exception(error):
        """
        汎用例外ハンドラー

        予期しない例外を処理し、スタックトレースをログ出力します。
        """
        logger.error(
            "unhandled_exception",
            error_type=type(error).__name__,
            error_message=str(error),
            path=request.path,
            method=request.method,
            stack_trace=traceback.format_exc(),
            exc_info=True
        )
        return create_error_response(
            error_type="internal_error",
            message=str(error) or "An unexpected error occurred",
            status_code=500
        )

    # ==========================================================================
    # エンドポイント (Endpoints)
    # ==========================================================================

    @app.route("/", methods=["GET"])
    def index():
        """通話ボタンの HTML ページを返す"""
        if (STATIC_DIR / BUTTON_PAGE).exists():
            return send_from_directory(STATIC_DIR, BUTTON_PAGE)
        return f"<h2>{BUTTON_PAGE} not found</h2>", 200

    @app.route("/health", methods=["GET"])
    def health_check():
        logger.debug("health_check_requested")
        return jsonify({"status": "healthy"}), 200

    @app.route("/api/lead/<record_id>", methods=["GET"])
    def get_lead(record_id: str):
        """
        Fireberry からリードを取得

        Returns:
            正規化されたリード。Fireberry のエラーはそのステータスで返す。
        """
        try:
            lead = orchestrator.fetch_lead(record_id)
            return jsonify(lead.to_dict()), 200
        except UpstreamAPIError as e:
            logger.warning("lead_fetch_rejected", record_id=record_id, status_code=e.status_code)
            return jsonify({"error": e.message}), e.status_code
        except (requests.RequestException, ValueError) as e:
            logger.error("lead_fetch_error", record_id=record_id, error=str(e), exc_info=True)
            return jsonify({"error": str(e)}), 500

    @app.route("/api/call", methods=["POST"])
    def start_call():
        """
        AI 発信通話を開始

        Request Body (JSON):
            - phone: 電話番号（必須）
            - recordId, name, campaign, adset, status, statusDetail,
              city, source, company, whatsappUrl, email

        Returns:
            {"callId": ..., "status": "initiated"}
        """
        data = request.get_json(force=True, silent=True)
        if data is None:
            data = {}

        is_valid, error_message = validate_json_request(data, required_fields=["phone"])
        if not is_valid:
            logger.warning("call_request_invalid", error_message=error_message)
            return jsonify({"error": error_message}), 400

        try:
            result = orchestrator.start_call(data)
            return jsonify(result), 200
        except CallValidationError as e:
            logger.warning("call_request_invalid", error_message=e.message)
            return jsonify({"error": e.message}), 400
        except UpstreamAPIError as e:
            logger.error("vapi_call_rejected", status_code=e.status_code, response_body=e.body)
            return jsonify({"error": e.message}), e.status_code
        except (requests.RequestException, ValueError) as e:
            logger.error("call_start_error", error=str(e), exc_info=True)
            return jsonify({"error": str(e)}), 500

    @app.route("/api/call-status/<call_id>", methods=["GET"])
    def call_status(call_id: str):
        """通話ステータスを返す（外部 API の障害時も 200 で unknown を返す）"""
        return jsonify(orchestrator.get_status(call_id)), 200

    @app.route("/webhook/vapi", methods=["POST"])
    def vapi_webhook():
        """
        Vapi Webhook エンドポイント

        内部処理の結果にかかわらず 200 を返します（送信元の再送を防ぐため）。
        署名検証が有効で検証に失敗した場合のみ 401 を返します。
        """
        if config.verify_webhook_signature:
            if not verify_webhook(request.headers, request.get_data(), config.webhook_secret):
                logger.warning("webhook_signature_invalid", remote_addr=request.remote_addr)
                return create_error_response(
                    error_type="unauthorized",
                    message="Invalid webhook signature",
                    status_code=401
                )

        data = request.get_json(force=True, silent=True)
        logger.debug("vapi_webhook_data", data=data)

        try:
            orchestrator.handle_webhook(data)
        except Exception as e:
            logger.error(
                "vapi_webhook_error",
                error_type=type(e).__name__,
                error_message=str(e),
                stack_trace=traceback.format_exc(),
                exc_info=True
            )

        return jsonify({"status": "ok"}), 200

    logger.info(
        "application_ready",
        endpoints=["/", "/health", "/api/lead/<recordId>", "/api/call",
                   "/api/call-status/<callId>", "/webhook/vapi"]
    )

    return app
