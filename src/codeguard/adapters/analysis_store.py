# Author: Bradley R. Kinnard — where analyses go to be remembered

"""
Persisted analysis records. DynamoDB in prod, a locked dict for local dev and tests.

Doubles as the slower second cache tier: find_recent() returns a completed record
for the same fingerprint + user if one is young enough.

Dynamo layout: table keyed on analysis_id, GSIs on (fingerprint, created_at)
and (user_id, created_at).
The full record rides along as a JSON blob in `payload` so we never fight
Decimal; status/error live as top-level attributes so update_status is one UpdateItem.
"""

import logging
import threading
import time
from typing import Protocol

import aioboto3
from botocore.config import Config

from src.codeguard.config import settings
from src.codeguard.core.models import AnalysisRecord, ErrorInfo, RecordStatus

log = logging.getLogger(__name__)


def now_millis() -> int:
    return int(time.time() * 1000)


class AnalysisStore(Protocol):
    async def find_recent(self, fingerprint: str, user_id: str, max_age_ms: int) -> AnalysisRecord | None: ...

    async def save(self, record: AnalysisRecord) -> None: ...

    async def update_status(self, analysis_id: str, status: RecordStatus, error: ErrorInfo | None = None) -> None: ...

    async def get(self, analysis_id: str, user_id: str) -> AnalysisRecord | None: ...

    async def list_recent(self, user_id: str, file_path: str | None = None) -> list[AnalysisRecord]: ...


class MemoryAnalysisStore:
    """Dict of analysis_id -> record JSON. Copies in, copies out, so nobody mutates stored state."""

    def __init__(self):
        self._records: dict[str, str] = {}
        self._lock = threading.Lock()

    async def find_recent(self, fingerprint: str, user_id: str, max_age_ms: int) -> AnalysisRecord | None:
        cutoff = now_millis() - max_age_ms
        with self._lock:
            rows = [AnalysisRecord.model_validate_json(raw) for raw in self._records.values()]
        matches = [
            r for r in rows
            if r.fingerprint == fingerprint
            and r.user_id == user_id
            and r.status == RecordStatus.COMPLETE
            and r.result is not None
            and r.created_at_millis >= cutoff
        ]
        if not matches:
            return None
        return max(matches, key=lambda r: r.created_at_millis)

    async def save(self, record: AnalysisRecord) -> None:
        with self._lock:
            self._records[record.analysis_id] = record.model_dump_json()

    async def update_status(self, analysis_id: str, status: RecordStatus, error: ErrorInfo | None = None) -> None:
        with self._lock:
            raw = self._records.get(analysis_id)
            if raw is None:
                log.warning(f"update_status for unknown analysis {analysis_id}")
                return
            record = AnalysisRecord.model_validate_json(raw)
            record.status = status
            record.error = error
            record.updated_at_millis = now_millis()
            self._records[analysis_id] = record.model_dump_json()

    async def get(self, analysis_id: str, user_id: str) -> AnalysisRecord | None:
        with self._lock:
            raw = self._records.get(analysis_id)
        if raw is None:
            return None
        record = AnalysisRecord.model_validate_json(raw)
        return record if record.user_id == user_id else None

    async def list_recent(self, user_id: str, file_path: str | None = None) -> list[AnalysisRecord]:
        """Completed records for a user, newest first."""
        with self._lock:
            rows = [AnalysisRecord.model_validate_json(raw) for raw in self._records.values()]
        matches = [
            r for r in rows
            if r.user_id == user_id
            and r.status == RecordStatus.COMPLETE
            and r.result is not None
            and (file_path is None or r.file_path == file_path)
        ]
        return sorted(matches, key=lambda r: r.created_at_millis, reverse=True)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


class DynamoAnalysisStore:

    def __init__(self, table_name: str | None = None, index_name: str | None = None, user_index_name: str | None = None):
        self.table_name = table_name or settings.analyses_table
        self.index_name = index_name or settings.fingerprint_index
        self.user_index_name = user_index_name or settings.user_index
        self._session: aioboto3.Session | None = None

    def _get_session(self) -> aioboto3.Session:
        if self._session is None:
            self._session = aioboto3.Session(
                aws_access_key_id=settings.aws_access_key_id or "test",
                aws_secret_access_key=settings.aws_secret_access_key or "test",
                region_name=settings.aws_region
            )
        return self._session

    def _dynamo_kwargs(self) -> dict:
        """build kwargs for dynamo client, including local endpoint if set"""
        timeout = max(1, int(settings.storage_timeout))
        kwargs: dict = {"config": Config(connect_timeout=timeout, read_timeout=timeout, retries={"max_attempts": 1})}
        if settings.dynamodb_endpoint:
            kwargs["endpoint_url"] = settings.dynamodb_endpoint
        return kwargs

    @staticmethod
    def _from_item(item: dict) -> AnalysisRecord:
        record = AnalysisRecord.model_validate_json(item["payload"])
        # top-level attributes win, update_status only touches those
        record.status = RecordStatus(item.get("status", record.status.value))
        if item.get("error_info"):
            record.error = ErrorInfo.model_validate_json(item["error_info"])
        if "updated_at" in item:
            record.updated_at_millis = int(item["updated_at"])
        return record

    async def find_recent(self, fingerprint: str, user_id: str, max_age_ms: int) -> AnalysisRecord | None:
        cutoff = now_millis() - max_age_ms
        session = self._get_session()
        async with session.resource("dynamodb", **self._dynamo_kwargs()) as dynamo:
            table = await dynamo.Table(self.table_name)
            resp = await table.query(
                IndexName=self.index_name,
                KeyConditionExpression="fingerprint = :fp AND created_at >= :cutoff",
                FilterExpression="user_id = :uid AND #s = :complete",
                ExpressionAttributeNames={"#s": "status"},
                ExpressionAttributeValues={
                    ":fp": fingerprint,
                    ":cutoff": cutoff,
                    ":uid": user_id,
                    ":complete": RecordStatus.COMPLETE.value,
                },
                ScanIndexForward=False,  # newest first
            )
        items = resp.get("Items", [])
        if not items:
            return None
        # GSI projections may drop payload, fall back to the base item
        if "payload" not in items[0]:
            return await self.get(items[0]["analysis_id"], user_id)
        return self._from_item(items[0])

    async def save(self, record: AnalysisRecord) -> None:
        session = self._get_session()
        async with session.resource("dynamodb", **self._dynamo_kwargs()) as dynamo:
            table = await dynamo.Table(self.table_name)
            item = {
                "analysis_id": record.analysis_id,
                "user_id": record.user_id,
                "fingerprint": record.fingerprint,
                "file_path": record.file_path,
                "status": record.status.value,
                "created_at": record.created_at_millis,
                "updated_at": record.updated_at_millis,
                "payload": record.model_dump_json(),
            }
            if record.error is not None:
                item["error_info"] = record.error.model_dump_json()
            await table.put_item(Item=item)

    async def update_status(self, analysis_id: str, status: RecordStatus, error: ErrorInfo | None = None) -> None:
        session = self._get_session()
        async with session.resource("dynamodb", **self._dynamo_kwargs()) as dynamo:
            table = await dynamo.Table(self.table_name)
            await table.update_item(
                Key={"analysis_id": analysis_id},
                UpdateExpression="SET #s = :s, error_info = :e, updated_at = :u",
                ExpressionAttributeNames={"#s": "status"},
                ExpressionAttributeValues={
                    ":s": status.value,
                    ":e": error.model_dump_json() if error else None,
                    ":u": now_millis(),
                },
            )

    async def get(self, analysis_id: str, user_id: str) -> AnalysisRecord | None:
        session = self._get_session()
        async with session.resource("dynamodb", **self._dynamo_kwargs()) as dynamo:
            table = await dynamo.Table(self.table_name)
            resp = await table.get_item(Key={"analysis_id": analysis_id})
        item = resp.get("Item")
        if not item or item.get("user_id") != user_id:
            return None
        return self._from_item(item)

    async def list_recent(self, user_id: str, file_path: str | None = None) -> list[AnalysisRecord]:
        filter_expr = "#s = :complete"
        values: dict = {":uid": user_id, ":complete": RecordStatus.COMPLETE.value}
        if file_path is not None:
            filter_expr += " AND file_path = :fp"
            values[":fp"] = file_path

        query = {
            "IndexName": self.user_index_name,
            "KeyConditionExpression": "user_id = :uid",
            "FilterExpression": filter_expr,
            "ExpressionAttributeNames": {"#s": "status"},
            "ExpressionAttributeValues": values,
            "ScanIndexForward": False,  # newest first
        }
        items: list[dict] = []
        session = self._get_session()
        async with session.resource("dynamodb", **self._dynamo_kwargs()) as dynamo:
            table = await dynamo.Table(self.table_name)
            while True:
                resp = await table.query(**query)
                items.extend(resp.get("Items", []))
                if "LastEvaluatedKey" not in resp:
                    break
                query["ExclusiveStartKey"] = resp["LastEvaluatedKey"]

        records = []
        for item in items:
            if "payload" in item:
                records.append(self._from_item(item))
            else:
                record = await self.get(item["analysis_id"], user_id)
                if record is not None:
                    records.append(record)
        return records

    async def ping(self) -> str:
        """health check: describe the table"""
        try:
            session = self._get_session()
            async with session.client("dynamodb", **self._dynamo_kwargs()) as dynamo:
                await dynamo.describe_table(TableName=self.table_name)
            return "ok"
        except Exception as e:
            return f"error: {e}"


def build_store() -> AnalysisStore:
    if settings.store_backend == "memory":
        log.info("using in-memory analysis store")
        return MemoryAnalysisStore()
    return DynamoAnalysisStore()
