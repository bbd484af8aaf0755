from __future__ import annotations

import copy
import logging
import threading
from functools import lru_cache
from typing import Any, Callable, Dict, List, Optional, Tuple

from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import ClientError

from teamcal.core.settings import S

logger = logging.getLogger(__name__)

Item = Dict[str, Any]
Mutator = Callable[[Optional[Item]], Item]


class Store:
    """Single-table item store keyed by (pk, sk).

    Items carrying a ``member``, ``owner``, ``channel`` or ``entity`` attribute are
    reachable through ``query_index`` on that attribute. ``mutate`` is the
    only read-modify-write primitive and is atomic per key.
    """

    def get(self, pk: str, sk: str) -> Optional[Item]:
        raise NotImplementedError

    def put(self, item: Item) -> None:
        raise NotImplementedError

    def delete(self, pk: str, sk: str) -> None:
        raise NotImplementedError

    def query(self, pk: str, prefix: str = "") -> List[Item]:
        raise NotImplementedError

    def query_index(self, attr: str, value: str) -> List[Item]:
        raise NotImplementedError

    def scan_sk(self, sk: str) -> List[Item]:
        raise NotImplementedError

    def mutate(self, pk: str, sk: str, fn: Mutator) -> Item:
        raise NotImplementedError

    def delete_many(self, keys: List[Tuple[str, str]]) -> int:
        raise NotImplementedError


class DynamoStore(Store):
    def __init__(self, table: Any, indexes: Dict[str, str], *, max_retries: int = 5) -> None:
        self.table = table
        self.indexes = indexes
        self.max_retries = max(1, max_retries)

    def get(self, pk: str, sk: str) -> Optional[Item]:
        return self.table.get_item(Key={"pk": pk, "sk": sk}).get("Item")

    def put(self, item: Item) -> None:
        self.table.put_item(Item=item)

    def delete(self, pk: str, sk: str) -> None:
        self.table.delete_item(Key={"pk": pk, "sk": sk})

    def _paged(self, call: Callable[..., Dict[str, Any]], **kwargs: Any) -> List[Item]:
        items: List[Item] = []
        last_key = None
        while True:
            if last_key:
                kwargs["ExclusiveStartKey"] = last_key
            resp = call(**kwargs)
            items.extend(resp.get("Items", []))
            last_key = resp.get("LastEvaluatedKey")
            if not last_key:
                break
        return items

    def query(self, pk: str, prefix: str = "") -> List[Item]:
        cond = Key("pk").eq(pk)
        if prefix:
            cond = cond & Key("sk").begins_with(prefix)
        return self._paged(self.table.query, KeyConditionExpression=cond, ScanIndexForward=True)

    def query_index(self, attr: str, value: str) -> List[Item]:
        return self._paged(
            self.table.query,
            IndexName=self.indexes[attr],
            KeyConditionExpression=Key(attr).eq(value),
        )

    def scan_sk(self, sk: str) -> List[Item]:
        return self._paged(self.table.scan, FilterExpression=Attr("sk").eq(sk))

    def mutate(self, pk: str, sk: str, fn: Mutator) -> Item:
        for attempt in range(1, self.max_retries + 1):
            current = self.get(pk, sk)
            version = int(current.get("version", 0)) if current else 0
            updated = dict(fn(dict(current) if current else None))
            updated.update({"pk": pk, "sk": sk, "version": version + 1})
            kwargs: Dict[str, Any] = {"Item": updated}
            if current is None:
                kwargs["ConditionExpression"] = "attribute_not_exists(pk)"
            else:
                kwargs["ConditionExpression"] = "version = :v"
                kwargs["ExpressionAttributeValues"] = {":v": version}
            try:
                self.table.put_item(**kwargs)
                return updated
            except ClientError as exc:
                code = exc.response.get("Error", {}).get("Code")
                if code != "ConditionalCheckFailedException" or attempt == self.max_retries:
                    raise
                logger.info("Write conflict on %s/%s, retry %d", pk, sk, attempt)
        raise RuntimeError("unreachable")

    def delete_many(self, keys: List[Tuple[str, str]]) -> int:
        deleted = 0
        if keys:
            with self.table.batch_writer() as batch:
                for pk, sk in keys:
                    batch.delete_item(Key={"pk": pk, "sk": sk})
                    deleted += 1
        return deleted


class MemoryStore(Store):
    """In-process store for local runs and tests."""

    def __init__(self) -> None:
        self._items: Dict[Tuple[str, str], Item] = {}
        self._guard = threading.Lock()
        self._locks: Dict[Tuple[str, str], threading.Lock] = {}

    def _lock_for(self, key: Tuple[str, str]) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    def get(self, pk: str, sk: str) -> Optional[Item]:
        it = self._items.get((pk, sk))
        return copy.deepcopy(it) if it is not None else None

    def put(self, item: Item) -> None:
        with self._guard:
            self._items[(item["pk"], item["sk"])] = copy.deepcopy(item)

    def delete(self, pk: str, sk: str) -> None:
        with self._guard:
            self._items.pop((pk, sk), None)

    def _snapshot(self) -> List[Item]:
        with self._guard:
            return [copy.deepcopy(it) for it in self._items.values()]

    def query(self, pk: str, prefix: str = "") -> List[Item]:
        found = [it for it in self._snapshot() if it["pk"] == pk and it["sk"].startswith(prefix)]
        return sorted(found, key=lambda it: it["sk"])

    def query_index(self, attr: str, value: str) -> List[Item]:
        return [it for it in self._snapshot() if it.get(attr) == value]

    def scan_sk(self, sk: str) -> List[Item]:
        return [it for it in self._snapshot() if it["sk"] == sk]

    def mutate(self, pk: str, sk: str, fn: Mutator) -> Item:
        with self._lock_for((pk, sk)):
            current = self.get(pk, sk)
            version = int(current.get("version", 0)) if current else 0
            updated = dict(fn(current))
            updated.update({"pk": pk, "sk": sk, "version": version + 1})
            self.put(updated)
            return copy.deepcopy(updated)

    def delete_many(self, keys: List[Tuple[str, str]]) -> int:
        deleted = 0
        with self._guard:
            for key in keys:
                if self._items.pop(key, None) is not None:
                    deleted += 1
        return deleted


@lru_cache(maxsize=1)
def get_store() -> Store:
    if S.calendar_store == "memory":
        logger.info("Using in-memory calendar store")
        return MemoryStore()
    from teamcal.core.tables import load_tables

    tables = load_tables()
    return DynamoStore(tables.calendar, tables.indexes, max_retries=S.store_max_retries)
