"""Tests for cache keys and cache stores"""

import json
from dataclasses import replace
from decimal import Decimal
from unittest.mock import MagicMock, PropertyMock, patch

import pytest
from botocore.exceptions import ClientError, NoCredentialsError

from journal_insights.cache import (
    CachedInsightRecord,
    CacheKey,
    DynamoInsightStore,
    InMemoryInsightStore,
    create_store,
)
from journal_insights.errors import CacheError
from journal_insights.settings import Settings


def client_error(code="ResourceNotFoundException", status=400, operation="GetItem"):
    return ClientError(
        {"Error": {"Code": code, "Message": "boom"}, "ResponseMetadata": {"HTTPStatusCode": status}},
        operation,
    )


class TestCacheKey:

    def test_identical_inputs_yield_identical_keys(self, user_id):
        first = CacheKey.for_request(user_id, "theme_summary", ("2025-10-01", "2025-10-31"))
        second = CacheKey.for_request(user_id, "theme_summary", ("2025-10-01", "2025-10-31"))
        assert first == second
        assert hash(first) == hash(second)
        assert first.storage_key() == second.storage_key()

    def test_storage_key_format(self):
        assert CacheKey.for_request("u1").storage_key() == "u1#theme_summary#*#*"
        key = CacheKey.for_request("u1", "weekly_recap", ("2025-10-01", "2025-10-07"))
        assert key.storage_key() == "u1#weekly_recap#2025-10-01#2025-10-07"

    def test_different_inputs_yield_different_keys(self):
        keys = {
            CacheKey.for_request("u1").storage_key(),
            CacheKey.for_request("u2").storage_key(),
            CacheKey.for_request("u1", "weekly_recap").storage_key(),
            CacheKey.for_request("u1", date_range=("2025-10-01", "2025-10-07")).storage_key(),
        }
        assert len(keys) == 4


class TestInMemoryInsightStore:

    def test_read_missing_returns_none(self, store):
        assert store.read(CacheKey.for_request("nobody")) is None

    def test_write_is_an_upsert(self, store, make_record):
        store.write(make_record(age_hours=10))
        newer = make_record(age_hours=1)
        store.write(newer)
        assert len(store) == 1
        assert store.read(newer.key) == newer


class TestCachedInsightRecord:

    def test_expires_at_is_generated_plus_ttl(self, make_record):
        record = make_record(age_hours=0, ttl_hours=168)
        assert (record.expires_at - record.generated_at).total_seconds() == 168 * 3600

    def test_item_round_trip_with_dynamodb_decimals(self, make_record):
        record = replace(
            make_record(age_hours=5),
            model_id="m", prompt_tokens=600, completion_tokens=400, generation_time_ms=1500,
        )
        item = record.to_item()
        assert item["cache_key"] == record.key.storage_key()
        assert json.loads(item["content"])["summary"] == "Cached summary"
        # DynamoDB returns numbers as Decimal
        for name in ("entries_count", "ttl_hours", "prompt_tokens", "completion_tokens", "generation_time_ms"):
            item[name] = Decimal(item[name])
        assert CachedInsightRecord.from_item(record.key, item) == record


class TestDynamoInsightStore:

    @pytest.fixture
    def table(self):
        return MagicMock()

    @pytest.fixture
    def dynamo_store(self, table):
        return DynamoInsightStore("test-insights", table=table)

    def test_read_uses_storage_key(self, dynamo_store, table, make_record):
        record = make_record(age_hours=3)
        table.get_item.return_value = {"Item": record.to_item()}
        assert dynamo_store.read(record.key) == record
        table.get_item.assert_called_once_with(Key={"cache_key": record.key.storage_key()})

    def test_read_missing_item_returns_none(self, dynamo_store, table):
        table.get_item.return_value = {}
        assert dynamo_store.read(CacheKey.for_request("u1")) is None

    def test_read_failure_raises_cache_error(self, dynamo_store, table):
        table.get_item.side_effect = client_error()
        with pytest.raises(CacheError):
            dynamo_store.read(CacheKey.for_request("u1"))

    def test_corrupted_item_raises_cache_error(self, dynamo_store, table):
        table.get_item.return_value = {"Item": {"cache_key": "u1#theme_summary#*#*", "content": "{"}}
        with pytest.raises(CacheError):
            dynamo_store.read(CacheKey.for_request("u1"))

    def test_write_puts_complete_item(self, dynamo_store, table, make_record):
        record = make_record(age_hours=0)
        assert dynamo_store.write(record) is True
        table.put_item.assert_called_once_with(Item=record.to_item())

    def test_write_failure_raises_cache_error(self, dynamo_store, table, make_record):
        table.put_item.side_effect = client_error(code="ProvisionedThroughputExceededException",
                                                  operation="PutItem")
        with pytest.raises(CacheError):
            dynamo_store.write(make_record(age_hours=0))


class TestCreateStore:

    def test_empty_table_name_uses_memory(self):
        assert isinstance(create_store(Settings(table_name="")), InMemoryInsightStore)

    def test_unreachable_table_falls_back_to_memory(self):
        with patch("journal_insights.cache.boto3") as mock_boto3:
            table = MagicMock()
            type(table).table_status = PropertyMock(side_effect=NoCredentialsError())
            mock_boto3.resource.return_value.Table.return_value = table
            assert isinstance(create_store(Settings()), InMemoryInsightStore)

    def test_reachable_table_uses_dynamodb(self):
        with patch("journal_insights.cache.boto3") as mock_boto3:
            table = MagicMock()
            table.table_status = "ACTIVE"
            mock_boto3.resource.return_value.Table.return_value = table
            store = create_store(Settings(table_name="insights"))
        assert isinstance(store, DynamoInsightStore)
        assert store.table is table
