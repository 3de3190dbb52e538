import logging
import time
from threading import Lock

import boto3
from boto3.dynamodb.types import TypeDeserializer, TypeSerializer
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from services.assets import history
from services.assets.errors import (
    ConfigurationError,
    ConnectivityError,
    InvalidArgumentError,
    NotFoundError,
)
from services.assets.normalize import build_patch, norm_str
from services.assets.records import AssetRecord
from services.assets.repository import BATCH_SIZE, AssetRepository, chunked, dispatch


logger = logging.getLogger("assettrack.storage.dynamodb")

KEY_ATTRIBUTE = "serialNumber"
UNPROCESSED_RETRIES = 3

_serializer = TypeSerializer()
_deserializer = TypeDeserializer()


def to_attributes(item):
    return {k: _serializer.serialize(v) for k, v in item.items()}


def from_attributes(item):
    return {k: _deserializer.deserialize(v) for k, v in (item or {}).items()}


def _key(asset_id):
    return {KEY_ATTRIBUTE: {"S": asset_id}}


def _error_code(ex):
    return str((ex.response or {}).get("Error", {}).get("Code") or "")


def _wrap(action, ex):
    if isinstance(ex, ClientError):
        code = _error_code(ex)
        return ConnectivityError(f"DynamoDB {action} failed: {code or ex}", code=code)
    return ConnectivityError(f"DynamoDB {action} failed: {ex}")


class DynamoAssetRepository(AssetRepository):
    """
    Flat-table backend keyed by serial number. Writes go out in batches of
    at most 25 items; an item that already exists is overwritten whole.
    """

    name = "dynamodb"

    def __init__(
        self,
        table_name,
        region="us-east-1",
        access_key="",
        secret_key="",
        client=None,
        backoff_seconds=0.2,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.table_name = norm_str(table_name)
        self.region = region or "us-east-1"
        self.access_key = access_key
        self.secret_key = secret_key
        self.backoff_seconds = backoff_seconds
        self._client = client
        self._client_lock = Lock()

    def check_configured(self):
        if not self.table_name:
            raise ConfigurationError("DynamoDB table name is missing.")
        if self._client is None and not (self.access_key and self.secret_key):
            raise ConfigurationError("DynamoDB credentials are not configured.")

    @property
    def client(self):
        """Low-level client from an explicit session, shared by the batch workers."""
        with self._client_lock:
            if self._client is None:
                self.check_configured()
                session = boto3.session.Session(
                    aws_access_key_id=self.access_key,
                    aws_secret_access_key=self.secret_key,
                    region_name=self.region,
                )
                self._client = session.client(
                    "dynamodb",
                    config=Config(
                        connect_timeout=self.timeout,
                        read_timeout=self.timeout,
                        retries={"max_attempts": 2},
                    ),
                )
            return self._client

    def _item(self, record):
        item = record.to_dict()
        item[KEY_ATTRIBUTE] = record.asset_id
        return to_attributes(item)

    # ------------------------------------------------------------------
    # contract
    # ------------------------------------------------------------------
    def fetch_all(self, best_effort=False):
        return self._read_guarded(self._scan, best_effort)

    def _scan(self):
        self.check_configured()
        records = []
        params = {"TableName": self.table_name}
        try:
            while True:
                page = self.client.scan(**params)
                for item in page.get("Items") or []:
                    records.append(AssetRecord.from_dict(from_attributes(item)))
                last_key = page.get("LastEvaluatedKey")
                if not last_key:
                    break
                params["ExclusiveStartKey"] = last_key
        except (ClientError, BotoCoreError) as ex:
            raise _wrap("scan", ex) from ex
        return records

    def _batch_write(self, requests):
        pending = {self.table_name: requests}
        for attempt in range(UNPROCESSED_RETRIES + 1):
            try:
                response = self.client.batch_write_item(RequestItems=pending)
            except (ClientError, BotoCoreError) as ex:
                raise _wrap("batch write", ex) from ex
            pending = response.get("UnprocessedItems") or {}
            if not pending.get(self.table_name):
                return
            if attempt < UNPROCESSED_RETRIES:
                time.sleep(self.backoff_seconds * (attempt + 1))
        left = len(pending.get(self.table_name) or [])
        raise ConnectivityError(f"DynamoDB left {left} items unprocessed", unprocessed=left)

    def _put_batch(self, records):
        self._batch_write([{"PutRequest": {"Item": self._item(r)}} for r in records])
        return records

    def add_many(self, drafts):
        self.check_configured()
        self.client  # create it here, not inside the workers
        by_serial = {}
        for draft in drafts:
            record = history.create(draft, asset_id=draft.serial_number, clock=self.clock)
            # one request may not carry the same key twice; the later row wins
            by_serial.pop(record.asset_id, None)
            by_serial[record.asset_id] = record

        tasks = {}
        for n, batch in enumerate(chunked(by_serial.values(), BATCH_SIZE), start=1):
            tasks[f"batch-{n}"] = lambda batch=batch: self._put_batch(batch)
        report = dispatch("add", tasks, timeout=self.timeout * 4)
        logger.info(
            "add_many: %s items in %s batches, %s failed",
            len(by_serial),
            len(tasks),
            len(report.failed),
        )
        return report

    def get(self, asset_id):
        self.check_configured()
        try:
            response = self.client.get_item(TableName=self.table_name, Key=_key(asset_id))
        except (ClientError, BotoCoreError) as ex:
            raise _wrap("get", ex) from ex
        item = response.get("Item")
        if not item:
            raise NotFoundError(f"Asset '{asset_id}' not found", asset_id=asset_id)
        return AssetRecord.from_dict(from_attributes(item))

    def update_one(self, asset_id, updates):
        self.check_configured()
        patch = build_patch(updates, site_rule=self.site_rule)
        if patch.serial_number is not None and patch.serial_number != asset_id:
            raise InvalidArgumentError(
                "Serial number is the table key and cannot be changed", field="serialNumber"
            )

        current = self.get(asset_id)
        updated = history.apply_update(current, patch, clock=self.clock, site_rule=self.site_rule)
        if updated is current:
            return current
        try:
            self.client.put_item(TableName=self.table_name, Item=self._item(updated))
        except (ClientError, BotoCoreError) as ex:
            raise _wrap("put", ex) from ex
        return updated

    def _delete_batch(self, records):
        self._batch_write(
            [{"DeleteRequest": {"Key": _key(r.asset_id)}} for r in records]
        )
        return records

    def delete_many(self, records):
        self.check_configured()
        unique = {}
        for item in records or []:
            if isinstance(item, AssetRecord):
                unique[item.asset_id] = item
            else:
                key = norm_str(item)
                # a bare key is enough to delete; the stub only carries the id
                unique[key] = AssetRecord(asset_id=key, model="", serial_number=key, site="")

        self.client
        tasks = {}
        for n, batch in enumerate(chunked(unique.values(), BATCH_SIZE), start=1):
            tasks[f"batch-{n}"] = lambda batch=batch: self._delete_batch(batch)
        return dispatch("delete", tasks, timeout=self.timeout * 4)

    def describe(self):
        out = super().describe()
        out.update({"table": self.table_name, "region": self.region})
        return out
