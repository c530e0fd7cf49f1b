"""Key-value storage for wallet records and IP usage history.

Two backends share the same interface: an in-process table for development
and tests, and DynamoDB through PynamoDB models.
"""
import dataclasses
import logging
from threading import Lock
from typing import Any, Callable

from pynamodb.attributes import NumberAttribute, UnicodeAttribute
from pynamodb.exceptions import PynamoDBException, UpdateError
from pynamodb.models import Model

from nano_faucet.config import Settings
from nano_faucet.errors import StaleRecord, UpstreamUnavailable
from nano_faucet.models.records import IpUsageRecord, WalletRecord

logger = logging.getLogger(__name__)

WALLETS = "wallets"
IP_USAGE = "ip_usage"

RECORD_TYPES = {
    WALLETS: WalletRecord,
    IP_USAGE: IpUsageRecord,
}
KEY_FIELDS = {
    WALLETS: "address",
    IP_USAGE: "ip",
}

Record = WalletRecord | IpUsageRecord


def record_key(table: str, record: Record) -> str:
    return getattr(record, KEY_FIELDS[table])


class AccountStore:
    """Interface for the faucet's key-value tables."""

    def get(self, table: str, key: str) -> Record | None:
        raise NotImplementedError

    def put(self, table: str, record: Record) -> None:
        raise NotImplementedError

    def update(self, table: str, key: str, fields: dict[str, Any],
               expected: dict[str, Any] | None = None) -> None:
        """Set ``fields`` on an existing record.

        Raises:
            StaleRecord: If the record is missing or any ``expected`` field
                holds a different value
        """
        raise NotImplementedError

    def scan(self, table: str, predicate: Callable[[Record], bool]) -> list[Record]:
        raise NotImplementedError


class MemoryStore(AccountStore):
    """In-process tables guarded by a lock."""

    def __init__(self):
        self._tables: dict[str, dict[str, Record]] = {name: {} for name in RECORD_TYPES}
        self._lock = Lock()

    def get(self, table: str, key: str) -> Record | None:
        with self._lock:
            return self._tables[table].get(key)

    def put(self, table: str, record: Record) -> None:
        with self._lock:
            self._tables[table][record_key(table, record)] = record

    def update(self, table: str, key: str, fields: dict[str, Any],
               expected: dict[str, Any] | None = None) -> None:
        with self._lock:
            current = self._tables[table].get(key)
            if current is None:
                raise StaleRecord(f"{key} does not exist in {table}")
            for name, value in (expected or {}).items():
                if getattr(current, name) != value:
                    raise StaleRecord(f"{table}/{key} {name} changed concurrently")
            self._tables[table][key] = dataclasses.replace(current, **fields)

    def scan(self, table: str, predicate: Callable[[Record], bool]) -> list[Record]:
        with self._lock:
            return [r for r in self._tables[table].values() if predicate(r)]


class WalletModel(Model):
    """DynamoDB item for a custodial wallet."""

    class Meta:
        table_name = "TryNanoWallets"
        region = "us-west-1"

    address = UnicodeAttribute(hash_key=True, attr_name="walletID")
    public_key = UnicodeAttribute(attr_name="publicKey")
    private_key = UnicodeAttribute(attr_name="privateKey")
    balance = NumberAttribute(default=0)
    expires_at = NumberAttribute(default=0, attr_name="returnToFaucetEpoch")


class IpUsageModel(Model):
    """DynamoDB item for one IP's faucet usage. ``ttl`` is the table's TTL attribute."""

    class Meta:
        table_name = "TryNanoIpUsage"
        region = "us-west-1"

    ip = UnicodeAttribute(hash_key=True)
    invocation_count = NumberAttribute(default=0, attr_name="count")
    last_used = NumberAttribute(attr_name="lastUsed")
    expires_at = NumberAttribute(default=0, attr_name="ttl")


MODELS: dict[str, type[Model]] = {
    WALLETS: WalletModel,
    IP_USAGE: IpUsageModel,
}

# Record fields whose model attribute has another name (Model.count is a classmethod)
MODEL_ATTRIBUTES = {
    IP_USAGE: {"count": "invocation_count"},
}


def model_attribute(table: str, field: str) -> str:
    return MODEL_ATTRIBUTES.get(table, {}).get(field, field)


def record_to_item(table: str, record: Record) -> Model:
    values = dataclasses.asdict(record)
    return MODELS[table](**{model_attribute(table, name): value for name, value in values.items()})


def item_to_record(table: str, item: Model) -> Record:
    record_type = RECORD_TYPES[table]
    values = {}
    for field in dataclasses.fields(record_type):
        value = getattr(item, model_attribute(table, field.name))
        if isinstance(value, float):
            value = int(value)
        values[field.name] = value
    return record_type(**values)


class DynamoStore(AccountStore):
    """Tables backed by DynamoDB."""

    def __init__(self, wallet_table: str, ip_usage_table: str, region: str):
        WalletModel.Meta.table_name = wallet_table
        WalletModel.Meta.region = region
        IpUsageModel.Meta.table_name = ip_usage_table
        IpUsageModel.Meta.region = region

    def get(self, table: str, key: str) -> Record | None:
        model = MODELS[table]
        try:
            item = model.get(key)
        except model.DoesNotExist:
            return None
        except PynamoDBException as e:
            raise UpstreamUnavailable(f"unable to read {key} from {table}") from e
        return item_to_record(table, item)

    def put(self, table: str, record: Record) -> None:
        try:
            record_to_item(table, record).save()
        except PynamoDBException as e:
            raise UpstreamUnavailable(f"unable to write {record_key(table, record)} to {table}") from e

    def update(self, table: str, key: str, fields: dict[str, Any],
               expected: dict[str, Any] | None = None) -> None:
        model = MODELS[table]
        hash_key = getattr(model, KEY_FIELDS[table])
        condition = hash_key.exists()
        for name, value in (expected or {}).items():
            condition &= getattr(model, model_attribute(table, name)) == value

        actions = [getattr(model, model_attribute(table, name)).set(value) for name, value in fields.items()]
        try:
            model(**{KEY_FIELDS[table]: key}).update(actions=actions, condition=condition)
        except UpdateError as e:
            if e.cause_response_code == "ConditionalCheckFailedException":
                raise StaleRecord(f"{table}/{key} changed concurrently") from e
            raise UpstreamUnavailable(f"unable to update {key} in {table}") from e

    def scan(self, table: str, predicate: Callable[[Record], bool]) -> list[Record]:
        try:
            records = [item_to_record(table, item) for item in MODELS[table].scan()]
        except PynamoDBException as e:
            raise UpstreamUnavailable(f"unable to scan {table}") from e
        return [r for r in records if predicate(r)]


def create_store(settings: Settings) -> AccountStore:
    """Build the store selected by ``settings.store_backend``."""
    if settings.store_backend == "dynamodb":
        logger.info("Using DynamoDB tables %s, %s", settings.wallet_table, settings.ip_usage_table)
        return DynamoStore(settings.wallet_table, settings.ip_usage_table, settings.aws_region)
    if settings.store_backend == "memory":
        logger.warning("Using in-memory store; records are lost on restart")
        return MemoryStore()
    raise ValueError(f"Unknown store backend: {settings.store_backend}")
