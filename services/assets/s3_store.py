import json
import logging
import re
from concurrent.futures import ThreadPoolExecutor
from threading import Lock

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from services.assets import history
from services.assets.errors import ConfigurationError, ConnectivityError, NotFoundError
from services.assets.normalize import build_patch, norm_str
from services.assets.records import AssetRecord
from services.assets.repository import MAX_WORKERS, AssetRepository, dispatch


logger = logging.getLogger("assettrack.storage.s3")

_SITE_KEY_RE = re.compile(r"[^A-Za-z0-9_-]")
_NOT_FOUND_CODES = {"NoSuchKey", "NotFound", "404"}


def sanitize_site(site):
    return _SITE_KEY_RE.sub("_", norm_str(site))


def site_file_key(site, prefix="assets/"):
    return f"{prefix}site_{sanitize_site(site)}.json"


def _error_code(ex):
    return str((ex.response or {}).get("Error", {}).get("Code") or "")


def _status_code(ex):
    return (ex.response or {}).get("ResponseMetadata", {}).get("HTTPStatusCode")


def dedupe_records(records):
    """
    A relocation that failed half way can leave one asset in two site files.
    Keep the copy with the longest history (the newer one).
    """
    best = {}
    order = []
    for record in records:
        seen = best.get(record.asset_id)
        if seen is None:
            order.append(record.asset_id)
            best[record.asset_id] = record
        elif len(record.history) > len(seen.history):
            best[record.asset_id] = record
    return [best[x] for x in order]


class S3AssetRepository(AssetRepository):
    """
    Grouped-file backend: one JSON array per site under `prefix`, always
    rewritten whole. Partition writes are read-modify-write with no
    locking, so two concurrent writers on one site can lose an update.
    """

    name = "s3"

    def __init__(
        self,
        bucket,
        region="us-east-1",
        access_key="",
        secret_key="",
        prefix="assets/",
        client=None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.bucket = norm_str(bucket)
        self.region = region or "us-east-1"
        self.access_key = access_key
        self.secret_key = secret_key
        self.prefix = prefix or "assets/"
        self._client = client
        self._client_lock = Lock()

    # ------------------------------------------------------------------
    # plumbing
    # ------------------------------------------------------------------
    def check_configured(self):
        if not self.bucket:
            raise ConfigurationError("S3 bucket name is missing.")
        if self._client is None and not (self.access_key and self.secret_key):
            raise ConfigurationError("S3 credentials are not configured.")

    @property
    def client(self):
        """
        Built once, in the calling thread, from an explicit session; worker
        threads only ever share the finished client.
        """
        with self._client_lock:
            if self._client is None:
                self.check_configured()
                session = boto3.session.Session(
                    aws_access_key_id=self.access_key,
                    aws_secret_access_key=self.secret_key,
                    region_name=self.region,
                )
                self._client = session.client(
                    "s3",
                    config=Config(
                        connect_timeout=self.timeout,
                        read_timeout=self.timeout,
                        retries={"max_attempts": 2},
                    ),
                )
            return self._client

    def key_for(self, site):
        return site_file_key(site, self.prefix)

    def _list_keys(self):
        keys = []
        try:
            paginator = self.client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket, Prefix=self.prefix):
                for obj in page.get("Contents") or []:
                    key = obj.get("Key") or ""
                    if key.endswith(".json"):
                        keys.append(key)
        except ClientError as ex:
            raise ConnectivityError(
                f"Could not list S3 bucket '{self.bucket}': {_error_code(ex) or ex}",
                code=_error_code(ex),
            ) from ex
        except BotoCoreError as ex:
            raise ConnectivityError(f"Could not connect to S3 bucket: {ex}") from ex
        return keys

    def _read_key(self, key):
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
            raw = response["Body"].read()
        except ClientError as ex:
            if _error_code(ex) in _NOT_FOUND_CODES or _status_code(ex) == 404:
                return []
            raise ConnectivityError(
                f"Failed to load assets from {key}: {_error_code(ex) or ex}",
                key=key,
                code=_error_code(ex),
            ) from ex
        except BotoCoreError as ex:
            raise ConnectivityError(f"Failed to load assets from {key}: {ex}", key=key) from ex

        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        if not raw.strip():
            return []
        try:
            items = json.loads(raw)
        except ValueError as ex:
            raise ConnectivityError(f"Asset file {key} is not valid JSON", key=key) from ex
        if not isinstance(items, list):
            raise ConnectivityError(f"Asset file {key} does not hold a JSON array", key=key)
        return [AssetRecord.from_dict(x) for x in items if isinstance(x, dict)]

    def _write_key(self, key, records):
        body = json.dumps([r.to_dict() for r in records])
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=body.encode("utf-8"),
                ContentType="application/json",
            )
        except ClientError as ex:
            raise ConnectivityError(
                f"Failed to write {key}: {_error_code(ex) or ex}", key=key, code=_error_code(ex)
            ) from ex
        except BotoCoreError as ex:
            raise ConnectivityError(f"Failed to write {key}: {ex}", key=key) from ex
        logger.debug("wrote %s records to s3://%s/%s", len(records), self.bucket, key)

    def _read_partitions(self, keys):
        if not keys:
            return {}
        with ThreadPoolExecutor(max_workers=min(MAX_WORKERS, len(keys))) as pool:
            return dict(zip(keys, pool.map(self._read_key, keys)))

    def _group_by_key(self, items):
        """{file_key: (site_label, [items])}; sites that sanitize alike share a file."""
        groups = {}
        for item in items:
            key = self.key_for(item.site)
            groups.setdefault(key, (item.site, []))[1].append(item)
        return groups

    # ------------------------------------------------------------------
    # contract
    # ------------------------------------------------------------------
    def fetch_all(self, best_effort=False):
        return self._read_guarded(self._fetch_all, best_effort)

    def _fetch_all(self):
        self.check_configured()
        partitions = self._read_partitions(self._list_keys())
        records = []
        for key in partitions:
            records.extend(partitions[key])
        return dedupe_records(records)

    def _append_to_partition(self, key, drafts):
        existing = self._read_key(key)
        created = [history.create(d, clock=self.clock) for d in drafts]
        self._write_key(key, existing + created)
        return created

    def add_many(self, drafts):
        self.check_configured()
        self.client  # create it here, not inside the workers
        tasks = {}
        for key, (label, group) in self._group_by_key(drafts).items():
            tasks[label] = lambda key=key, group=group: self._append_to_partition(key, group)
        report = dispatch("add", tasks, timeout=self.timeout * 4)
        logger.info(
            "add_many: %s assets written, %s partitions failed",
            len(report.records),
            len(report.failed),
        )
        return report

    def _locate(self, asset_id):
        """
        Returns (partitions, key, record) for the live copy of `asset_id`.
        Same rule as dedupe_records(): the longest history wins; on a tie the
        copy sitting in its own site's file does.
        """
        partitions = self._read_partitions(self._list_keys())
        holders = [
            (key, record)
            for key, records in partitions.items()
            for record in records
            if record.asset_id == asset_id
        ]
        if not holders:
            raise NotFoundError(f"Asset '{asset_id}' not found", asset_id=asset_id)
        key, record = max(
            holders, key=lambda h: (len(h[1].history), h[0] == self.key_for(h[1].site))
        )
        return partitions, key, record

    def update_one(self, asset_id, updates):
        self.check_configured()
        patch = build_patch(updates, site_rule=self.site_rule)
        partitions, key, current = self._locate(asset_id)

        updated = history.apply_update(current, patch, clock=self.clock, site_rule=self.site_rule)
        if updated is current:
            return current

        new_key = self.key_for(updated.site)
        target = partitions.get(new_key, [])
        if any(r.asset_id == asset_id for r in target):
            target = [updated if r.asset_id == asset_id else r for r in target]
        else:
            target = target + [updated]
        self._write_key(new_key, target)

        # then drop every other copy: the old file on a site change, plus
        # leftovers of an earlier relocation that stopped half way
        for other_key, records in partitions.items():
            if other_key == new_key or not any(r.asset_id == asset_id for r in records):
                continue
            self._write_key(other_key, [r for r in records if r.asset_id != asset_id])
        if new_key != key:
            logger.info("relocated asset %s from %s to %s", asset_id, key, new_key)
        return updated

    def _remove_from_partition(self, key, ids):
        existing = self._read_key(key)
        kept = [r for r in existing if r.asset_id not in ids]
        removed = [r for r in existing if r.asset_id in ids]
        if removed:
            self._write_key(key, kept)
        return removed

    def delete_many(self, records):
        """Removes each id from every site file holding it, stale copies included."""
        self.check_configured()
        ids = set()
        for item in records or []:
            asset_id = item.asset_id if isinstance(item, AssetRecord) else norm_str(item)
            if asset_id:
                ids.add(asset_id)

        partitions = self._read_partitions(self._list_keys())
        tasks = {}
        for key, existing in partitions.items():
            hits = {r.asset_id for r in existing if r.asset_id in ids}
            if not hits:
                continue
            label = key[len(self.prefix) :]
            tasks[label] = lambda key=key, hits=hits: self._remove_from_partition(key, hits)

        report = dispatch("delete", tasks, timeout=self.timeout * 4)
        report.records = dedupe_records(report.records)
        known = {r.asset_id for existing in partitions.values() for r in existing}
        for asset_id in sorted(ids - known):
            logger.info("delete skipped unknown asset id %s", asset_id)
        return report

    def describe(self):
        out = super().describe()
        out.update({"bucket": self.bucket, "prefix": self.prefix, "region": self.region})
        return out
