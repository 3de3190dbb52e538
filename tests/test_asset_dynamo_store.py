import threading

import boto3
import pytest
from botocore.exceptions import EndpointConnectionError

from services.assets.dynamo_store import DynamoAssetRepository, from_attributes, to_attributes
from services.assets.errors import ConfigurationError, ConnectivityError, InvalidArgumentError, NotFoundError
from services.assets.records import AssetDraft, AssetStatus


class FakeDynamo:
    """
    Low-level client stand-in speaking attribute-value items; keeps plain
    copies in `items` and can hold writes back as unprocessed.
    """

    def __init__(self, unprocessed_rounds=0, page_size=2):
        self.items = {}
        self.batches = []
        self.unprocessed_rounds = unprocessed_rounds
        self.page_size = page_size

    def scan(self, TableName, ExclusiveStartKey=None):
        assert TableName == "assets"
        keys = sorted(self.items)
        if ExclusiveStartKey is not None:
            start = ExclusiveStartKey["serialNumber"]["S"]
            keys = keys[keys.index(start) + 1 :]
        page = keys[: self.page_size]
        out = {"Items": [to_attributes(self.items[k]) for k in page]}
        if len(keys) > self.page_size:
            out["LastEvaluatedKey"] = {"serialNumber": {"S": page[-1]}}
        return out

    def get_item(self, TableName, Key):
        item = self.items.get(Key["serialNumber"]["S"])
        return {"Item": to_attributes(item)} if item else {}

    def put_item(self, TableName, Item):
        item = from_attributes(Item)
        self.items[item["serialNumber"]] = item

    def batch_write_item(self, RequestItems):
        requests = RequestItems["assets"]
        assert len(requests) <= 25
        self.batches.append(len(requests))
        held = []
        if self.unprocessed_rounds > 0:
            self.unprocessed_rounds -= 1
            held, requests = requests[-1:], requests[:-1]
        for req in requests:
            if "PutRequest" in req:
                item = from_attributes(req["PutRequest"]["Item"])
                self.items[item["serialNumber"]] = item
            else:
                self.items.pop(req["DeleteRequest"]["Key"]["serialNumber"]["S"], None)
        return {"UnprocessedItems": {"assets": held} if held else {}}


def _repo(fake, clock=None):
    return DynamoAssetRepository(table_name="assets", client=fake, clock=clock, backoff_seconds=0)


def _drafts(n, site="LON1"):
    return [AssetDraft(model="R640", serial_number=f"SN{i:03d}", site=site) for i in range(n)]


def test_missing_table_is_configuration_error():
    with pytest.raises(ConfigurationError):
        DynamoAssetRepository(table_name="").fetch_all()
    with pytest.raises(ConfigurationError):
        DynamoAssetRepository(table_name="assets").add_many(_drafts(1))


def test_add_many_writes_batches_of_at_most_25(clock):
    fake = FakeDynamo()
    report = _repo(fake, clock).add_many(_drafts(60))

    assert report.ok
    assert sorted(fake.batches) == [10, 25, 25]
    assert len(fake.items) == 60
    # serial number doubles as identity
    assert all(r.asset_id == r.serial_number for r in report.records)


def test_items_are_sent_as_typed_attributes(clock):
    fake = FakeDynamo()
    sent = []
    original = fake.batch_write_item

    def capture(RequestItems):
        sent.extend(RequestItems["assets"])
        return original(RequestItems)

    fake.batch_write_item = capture
    _repo(fake, clock).add_many(_drafts(1))

    item = sent[0]["PutRequest"]["Item"]
    assert item["serialNumber"] == {"S": "SN000"}
    assert item["status"] == {"S": "Normal"}
    assert "N" in item["createdAt"]
    assert item["history"]["L"][0]["M"]["field"] == {"S": "System"}


def test_add_many_collapses_duplicate_serials_in_one_request(clock):
    fake = FakeDynamo()
    drafts = [
        AssetDraft(model="A", serial_number="SN1", site="LON1"),
        AssetDraft(model="B", serial_number="SN1", site="LON1"),
    ]
    report = _repo(fake, clock).add_many(drafts)
    assert len(report.records) == 1
    assert fake.items["SN1"]["model"] == "B"


def test_unprocessed_items_are_retried(clock):
    fake = FakeDynamo(unprocessed_rounds=2)
    report = _repo(fake, clock).add_many(_drafts(3))
    assert report.ok
    assert len(fake.items) == 3
    assert fake.batches == [3, 1, 1]


def test_unprocessed_items_left_after_retries_fail_the_batch(clock):
    fake = FakeDynamo(unprocessed_rounds=10)
    report = _repo(fake, clock).add_many(_drafts(2))
    assert not report.ok
    assert list(report.failed) == ["batch-1"]
    assert "unprocessed" in report.failed["batch-1"]


def test_fetch_all_follows_scan_pages(clock):
    fake = FakeDynamo()
    repo = _repo(fake, clock)
    repo.add_many(_drafts(5))

    records = repo.fetch_all()

    assert [r.serial_number for r in records] == [f"SN{i:03d}" for i in range(5)]
    # numbers come back from the wire as Decimal
    assert all(isinstance(r.created_at, int) for r in records)


def test_update_one_puts_merged_item(clock):
    fake = FakeDynamo()
    repo = _repo(fake, clock)
    repo.add_many(_drafts(1))

    updated = repo.update_one("SN000", {"status": "RMA Eligible", "site": "PAR1"})

    assert updated.status == AssetStatus.RMA_ELIGIBLE
    stored = fake.items["SN000"]
    assert stored["site"] == "PAR1"
    assert [h["field"] for h in stored["history"]] == ["System", "site", "status"]
    assert repo.get("SN000") == updated


def test_update_one_rejects_serial_change_and_unknown_id(clock):
    fake = FakeDynamo()
    repo = _repo(fake, clock)
    repo.add_many(_drafts(1))

    with pytest.raises(InvalidArgumentError):
        repo.update_one("SN000", {"serialNumber": "OTHER"})
    with pytest.raises(NotFoundError):
        repo.update_one("nope", {"model": "X"})


def test_scan_error_is_connectivity_error():
    class Broken(FakeDynamo):
        def scan(self, TableName, ExclusiveStartKey=None):
            raise EndpointConnectionError(endpoint_url="https://dynamodb.invalid")

    with pytest.raises(ConnectivityError):
        _repo(Broken()).fetch_all()


def test_delete_many_by_id(clock):
    fake = FakeDynamo()
    repo = _repo(fake, clock)
    repo.add_many(_drafts(3))

    report = repo.delete_many(["SN000", "SN002"])

    assert report.ok
    assert sorted(fake.items) == ["SN001"]
    assert sorted(r.asset_id for r in report.records) == ["SN000", "SN002"]


def test_client_is_built_once_in_the_calling_thread(monkeypatch, clock):
    fake = FakeDynamo()
    built = []

    class CountingSession:
        def __init__(self, **kwargs):
            self.kwargs = kwargs

        def client(self, service, config=None):
            built.append((service, threading.current_thread().name, self.kwargs["region_name"]))
            return fake

    monkeypatch.setattr(boto3.session, "Session", CountingSession)
    repo = DynamoAssetRepository(
        table_name="assets", access_key="AK", secret_key="SK", region="eu-west-1", clock=clock, backoff_seconds=0
    )

    repo.add_many(_drafts(60))
    repo.delete_many(["SN000"])

    assert built == [("dynamodb", threading.current_thread().name, "eu-west-1")]
    assert len(fake.items) == 59
