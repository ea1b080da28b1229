"""
通話ライフサイクル管理モジュール (Call Lifecycle Orchestrator Module)

通話の開始、ステータスのポーリング、Vapi Webhook の取り込み、
Fireberry への結果の書き戻しを調整します。
"""

import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

import structlog

from .call_context import build_assistant_overrides
from .call_store import CallStore
from .clients import FireberryClient, UpstreamAPIError, VapiClient
from .lead_normalizer import normalize_lead
from .models import CallRecord, CallStatus, Lead, map_provider_status
from .outcome_mapper import map_outcome
from .phone import normalize_phone

# 氏名が不明な場合に Vapi に渡す顧客名
DEFAULT_CUSTOMER_NAME = "ليد"

# 構造化分析の値が欠落している場合の既定値
UNKNOWN_OUTCOME = "UNKNOWN"
NO_INTEREST = "none"


class CallValidationError(Exception):
    """
    通話開始リクエストの検証エラー

    Attributes:
        message: エラーメッセージ
    """

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if not value or not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def duration_between(started_at: Any, ended_at: Any) -> Optional[int]:
    """開始・終了時刻から通話時間（秒）を計算。どちらかが欠けている場合は None"""
    started = _parse_timestamp(started_at)
    ended = _parse_timestamp(ended_at)
    if started is None or ended is None:
        return None
    try:
        return round((ended - started).total_seconds())
    except TypeError:
        # タイムゾーン有無が混在している場合
        return None


def _as_dict(value: Any) -> Dict[str, Any]:
    """辞書以外の値は空の辞書として扱う"""
    return value if isinstance(value, dict) else {}


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _start_daemon_thread(target: Callable[..., Any], *args: Any) -> None:
    thread = threading.Thread(target=target, args=args)
    thread.daemon = True
    thread.start()


class CallLifecycleOrchestrator:
    """
    通話ライフサイクルを調整するクラス

    Attributes:
        store: 通話ストア
        crm_client: Fireberry クライアント
        voice_client: Vapi クライアント
        run_in_background: CRM 書き戻しを非同期に実行する関数
        logger: 構造化ロガー
    """

    def __init__(
        self,
        store: CallStore,
        crm_client: FireberryClient,
        voice_client: VapiClient,
        run_in_background: Optional[Callable[..., None]] = None,
    ):
        self.store = store
        self.crm_client = crm_client
        self.voice_client = voice_client
        self.run_in_background = run_in_background or _start_daemon_thread
        self.logger = structlog.get_logger(__name__)

    # ------------------------------------------------------------------
    # リード取得
    # ------------------------------------------------------------------

    def fetch_lead(self, record_id: str) -> Lead:
        """
        Fireberry からリードを取得して正規化

        Raises:
            UpstreamAPIError: Fireberry が成功以外のステータスを返した場合
            requests.RequestException: 通信に失敗した場合
        """
        raw = self.crm_client.get_record(record_id)
        lead = normalize_lead(raw, record_id)
        self.logger.info(
            "lead_fetched",
            record_id=lead.record_id,
            name=lead.name,
            phone=lead.phone,
            campaign=lead.campaign,
        )
        return lead

    # ------------------------------------------------------------------
    # 通話開始
    # ------------------------------------------------------------------

    def start_call(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        発信通話を開始

        電話番号を正規化し、リード情報をアシスタントのオーバーライドと
        メタデータに詰めて Vapi で通話を作成します。成功した場合のみ
        INITIATED のレコードをストアに登録します。

        Args:
            payload: リード項目と phone を含むリクエストボディ

        Returns:
            {"callId": ..., "status": "initiated"}

        Raises:
            CallValidationError: 電話番号が欠落または不正な場合
            UpstreamAPIError: Vapi が成功以外のステータスを返した場合
            requests.RequestException: 通信に失敗した場合
        """
        phone = payload.get("phone")
        if not phone:
            raise CallValidationError("phone is required")

        e164_phone = normalize_phone(phone)
        if not e164_phone:
            raise CallValidationError(f"Invalid phone number: {phone}")

        record_id = payload.get("recordId")
        name = payload.get("name")
        lead_fields = {
            "campaign": payload.get("campaign"),
            "adset": payload.get("adset"),
            "status": payload.get("status"),
            "statusDetail": payload.get("statusDetail"),
            "city": payload.get("city"),
            "source": payload.get("source"),
            "company": payload.get("company"),
            "whatsappUrl": payload.get("whatsappUrl"),
        }

        self.logger.info(
            "call_starting",
            name=name,
            phone=e164_phone,
            campaign=lead_fields["campaign"],
            city=lead_fields["city"],
        )

        assistant_overrides = build_assistant_overrides(
            name=name,
            campaign=lead_fields["campaign"],
            adset=lead_fields["adset"],
            status=lead_fields["status"],
            status_detail=lead_fields["statusDetail"],
            city=lead_fields["city"],
            source=lead_fields["source"],
            company=lead_fields["company"],
            whatsapp_url=lead_fields["whatsappUrl"],
        )

        # metadata は end-of-call-report でそのまま返ってくる
        metadata = {"recordId": record_id, "name": name, "phone": e164_phone, **lead_fields}
        metadata = {k: v for k, v in metadata.items() if v is not None}

        call_data = self.voice_client.create_call(
            customer_number=e164_phone,
            customer_name=name or DEFAULT_CUSTOMER_NAME,
            assistant_overrides=assistant_overrides,
            metadata=metadata,
        )
        call_id = call_data.get("id")
        if not call_id:
            raise UpstreamAPIError("Vapi response did not include a call id", status_code=502)

        evicted = self.store.evict_expired()
        if evicted:
            self.logger.debug("call_records_evicted", count=evicted)

        self.store.create(CallRecord(
            call_id=call_id,
            status=CallStatus.INITIATED,
            record_id=record_id or None,
            lead_name=name,
            phone=e164_phone,
            campaign=lead_fields["campaign"],
            city=lead_fields["city"],
            started_at=_utc_now_iso(),
        ))

        self.logger.info("call_created", call_id=call_id, record_id=record_id)
        return {"callId": call_id, "status": CallStatus.INITIATED}

    # ------------------------------------------------------------------
    # ステータス取得
    # ------------------------------------------------------------------

    def get_status(self, call_id: str) -> Dict[str, Any]:
        """
        通話ステータスを取得

        ストア上で既に終了しているレコードはそのまま返し、Vapi には問い合わせません。
        それ以外は Vapi に現在の状態を問い合わせ、ストアにマージして返します。
        問い合わせに失敗した場合は例外を送出せず UNKNOWN を返します。

        Returns:
            {"callId", "status", "durationSeconds"?} または {"status": "unknown"}
        """
        stored = self.store.get(call_id)
        if stored is not None and stored.is_terminal:
            return stored.to_dict()

        try:
            data = self.voice_client.get_call(call_id)
        except UpstreamAPIError as e:
            self.logger.warning(
                "call_status_query_rejected",
                call_id=call_id,
                status_code=e.status_code,
            )
            return {"status": CallStatus.UNKNOWN}
        except Exception as e:
            self.logger.error(
                "call_status_query_error",
                call_id=call_id,
                error=str(e),
                exc_info=True,
            )
            return {"status": CallStatus.UNKNOWN, "error": str(e)}

        provider_status = _as_dict(data).get("status")
        if not isinstance(provider_status, str):
            self.logger.warning("call_status_unrecognized", call_id=call_id)
            return {"status": CallStatus.UNKNOWN}

        mapped = map_provider_status(provider_status)
        status = mapped or CallStatus.UNKNOWN
        if mapped:
            status = self.store.merge(call_id, status=mapped).status

        view: Dict[str, Any] = {"callId": call_id, "status": status}
        duration = duration_between(data.get("startedAt"), data.get("endedAt"))
        if duration is not None:
            view["durationSeconds"] = duration
        return view

    # ------------------------------------------------------------------
    # Webhook
    # ------------------------------------------------------------------

    def handle_webhook(self, event: Any) -> None:
        """
        Vapi Webhook イベントを振り分け

        未知のイベント種別や不正な形式のイベントは無視します。
        """
        message = event.get("message") if isinstance(event, dict) else None
        if not isinstance(message, dict):
            self.logger.debug("webhook_event_without_message")
            return

        event_type = message.get("type")
        self.logger.info("webhook_event_received", event_type=event_type or "unknown")

        if event_type == "end-of-call-report":
            self.handle_end_of_call(message)
        elif event_type == "status-update":
            self.handle_status_update(message)
        else:
            self.logger.debug("webhook_event_ignored", event_type=event_type)

    def handle_status_update(self, message: Dict[str, Any]) -> Optional[CallRecord]:
        """
        status-update イベントを処理

        通話 ID またはステータスがないイベントは何もせずに無視します。
        """
        call_id = _as_dict(message.get("call")).get("id")
        provider_status = message.get("status")
        status = map_provider_status(provider_status) if isinstance(provider_status, str) else None
        if not call_id or not status:
            self.logger.debug("status_update_ignored", call_id=call_id, status=status)
            return None

        record = self.store.merge(call_id, status=status)
        self.logger.info(
            "call_status_updated",
            call_id=call_id,
            requested_status=status,
            status=record.status,
        )
        return record

    def handle_end_of_call(self, message: Dict[str, Any]) -> Optional[CallRecord]:
        """
        end-of-call-report イベントを処理

        レコードを ENDED にし、構造化分析の結果を保存します。レコードに CRM の
        レコード ID がある場合は、Fireberry への書き戻しを非同期に開始します。
        """
        call = _as_dict(message.get("call"))
        call_id = call.get("id")
        if not call_id:
            self.logger.warning("end_of_call_without_call_id")
            return None

        analysis = _as_dict(message.get("analysis"))
        structured = _as_dict(analysis.get("structuredData"))
        metadata = _as_dict(call.get("metadata"))

        outcome = structured.get("outcome") or UNKNOWN_OUTCOME
        interest_level = structured.get("interestLevel") or NO_INTEREST
        main_objection = structured.get("mainObjection") or None
        customer_background = structured.get("customerBackground") or None
        whatsapp_sent = bool(structured.get("whatsappSent"))
        has_bdi_issue = bool(structured.get("hasBDIIssue"))
        summary = analysis.get("summary") or ""
        duration = duration_between(call.get("startedAt"), call.get("endedAt")) or 0
        record_id = metadata.get("recordId") or None

        self.logger.info(
            "call_ended",
            call_id=call_id,
            outcome=outcome,
            interest_level=interest_level,
            duration_seconds=duration,
        )

        record = self.store.merge(
            call_id,
            record_id=record_id,
            status=CallStatus.ENDED,
            outcome=outcome,
            interest_level=interest_level,
            main_objection=main_objection,
            customer_background=customer_background,
            summary=summary,
            duration_seconds=duration,
            whatsapp_sent=whatsapp_sent,
            has_bdi_issue=has_bdi_issue,
            ended_at=call.get("endedAt"),
        )

        crm_record_id = record.record_id
        if crm_record_id:
            self.run_in_background(
                self.write_back,
                crm_record_id,
                outcome,
                interest_level,
                main_objection,
                has_bdi_issue,
                whatsapp_sent,
                summary,
                duration,
            )
        return record

    # ------------------------------------------------------------------
    # CRM 書き戻し
    # ------------------------------------------------------------------

    def write_back(
        self,
        record_id: str,
        outcome: str,
        interest_level: Optional[str],
        main_objection: Optional[str],
        has_bdi_issue: bool,
        whatsapp_sent: bool,
        summary: Optional[str],
        duration_seconds: int,
    ) -> bool:
        """
        通話結果を Fireberry に書き戻す

        失敗はログに出力するのみで、再試行や呼び出し元への通知は行いません。

        Returns:
            更新に成功した場合は True
        """
        mapping = map_outcome(
            outcome=outcome,
            interest_level=interest_level,
            main_objection=main_objection,
            has_bdi_issue=has_bdi_issue,
            whatsapp_sent=whatsapp_sent,
            summary=summary,
            duration_seconds=duration_seconds,
        )
        patch = mapping.to_crm_patch()

        try:
            self.crm_client.update_record(record_id, patch)
        except UpstreamAPIError as e:
            # フィールド名の問題を調査しやすいよう送信内容も出力する
            self.logger.error(
                "crm_update_failed",
                record_id=record_id,
                status_code=e.status_code,
                response_body=e.body,
                attempted_patch=patch,
            )
            return False
        except Exception as e:
            self.logger.error(
                "crm_update_error",
                record_id=record_id,
                error=str(e),
                exc_info=True,
            )
            return False

        self.logger.info(
            "crm_record_updated",
            record_id=record_id,
            crm_status=mapping.crm_status or "note added",
        )
        return True
