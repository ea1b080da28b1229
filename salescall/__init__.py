"""
AI Sales Call Server

Fireberry CRM と Vapi を連携させる AI 営業通話サーバー
"""

__version__ = "0.1.0"

from salescall.config import Config, ConfigurationError

__all__ = ["Config", "ConfigurationError"]
