#!/usr/bin/env python3
"""
AI Sales Call Server アプリケーションエントリーポイント

.env と環境変数から設定を読み込み、検証し、Flask 開発サーバーを起動します。

Usage:
    python main.py

Environment Variables (Required):
    - FIREBERRY_API_KEY: Fireberry API トークン
    - VAPI_API_KEY: Vapi API キー
    - VAPI_ASSISTANT_ID: Vapi アシスタント ID
    - VAPI_PHONE_NUMBER_ID: Vapi 発信元電話番号 ID

Environment Variables (Optional):
    - WEBHOOK_SECRET / VERIFY_WEBHOOK_SIGNATURE: Webhook 検証
    - HTTP_TIMEOUT_SECONDS: 外部 API タイムアウト (デフォルト: 15)
    - CALL_RECORD_TTL_HOURS: 終了済み通話の保持時間 (デフォルト: 24)
    - LOG_LEVEL: ログレベル (デフォルト: INFO)
    - HOST: サーバーホスト (デフォルト: 0.0.0.0)
    - PORT: サーバーポート (デフォルト: 3000)
    - DEBUG: デバッグモード (デフォルト: False)
"""

import os
import sys

from dotenv import load_dotenv

from salescall.app import create_app
from salescall.config import Config, ConfigurationError


def main() -> int:
    """
    アプリケーションのメインエントリーポイント

    Returns:
        int: 終了コード (0: 正常終了, 1: エラー終了)
    """
    load_dotenv()

    try:
        print("設定を読み込んでいます...")
        config = Config.from_env()

        app = create_app(config)

        host = os.environ.get("HOST", "0.0.0.0")
        port = int(os.environ.get("PORT", "3000"))
        debug = os.environ.get("DEBUG", "").lower() in ("true", "1", "yes")

        print(f"サーバーを起動しています... (host={host}, port={port}, debug={debug})")
        print(f"  Button UI:  http://localhost:{port}/")
        print(f"  Call API:   POST http://localhost:{port}/api/call")
        print(f"  Vapi hook:  POST http://localhost:{port}/webhook/vapi")
        print("サーバーを停止するには Ctrl+C を押してください。")

        app.run(host=host, port=port, debug=debug)

        return 0

    except ConfigurationError as e:
        print("\n[エラー] 設定エラーが発生しました:", file=sys.stderr)
        print(f"  {e}", file=sys.stderr)
        print("\n必須の環境変数:", file=sys.stderr)
        print("  - FIREBERRY_API_KEY: Fireberry API トークン", file=sys.stderr)
        print("  - VAPI_API_KEY: Vapi API キー", file=sys.stderr)
        print("  - VAPI_ASSISTANT_ID: Vapi アシスタント ID", file=sys.stderr)
        print("  - VAPI_PHONE_NUMBER_ID: Vapi 発信元電話番号 ID", file=sys.stderr)
        return 1

    except KeyboardInterrupt:
        print("\nサーバーを停止しました。")
        return 0


if __name__ == "__main__":
    sys.exit(main())
