from __future__ import annotations

import threading
import unittest
from unittest.mock import MagicMock

from botocore.exceptions import ClientError

from teamcal.core.store import DynamoStore, MemoryStore


def conflict() -> ClientError:
    return ClientError({"Error": {"Code": "ConditionalCheckFailedException", "Message": "x"}}, "PutItem")


class TestDynamoStore(unittest.TestCase):
    def build(self, **kwargs) -> DynamoStore:
        self.table = MagicMock()
        indexes = {
            "member": "member-index", "owner": "owner-index",
            "channel": "channel-index", "entity": "entity-index",
        }
        return DynamoStore(self.table, indexes, **kwargs)

    def test_query_follows_pages(self):
        store = self.build()
        self.table.query.side_effect = [
            {"Items": [{"sk": "MEMBER#a"}], "LastEvaluatedKey": {"pk": "p", "sk": "MEMBER#a"}},
            {"Items": [{"sk": "MEMBER#b"}]},
        ]
        items = store.query("EVENT#1", "MEMBER#")
        self.assertEqual([it["sk"] for it in items], ["MEMBER#a", "MEMBER#b"])
        second = self.table.query.call_args_list[1].kwargs
        self.assertEqual(second["ExclusiveStartKey"], {"pk": "p", "sk": "MEMBER#a"})

    def test_query_index_uses_named_index(self):
        store = self.build()
        self.table.query.return_value = {"Items": []}
        store.query_index("owner", "alice")
        self.assertEqual(self.table.query.call_args.kwargs["IndexName"], "owner-index")

    def test_event_listing_queries_sparse_index_instead_of_scanning(self):
        store = self.build()
        self.table.query.return_value = {"Items": []}
        store.query_index("entity", "event")
        self.assertEqual(self.table.query.call_args.kwargs["IndexName"], "entity-index")
        self.table.scan.assert_not_called()

    def test_mutate_creates_with_not_exists_condition(self):
        store = self.build()
        self.table.get_item.return_value = {}
        out = store.mutate("EVENT#1", "META", lambda cur: {"title": "x"})
        kwargs = self.table.put_item.call_args.kwargs
        self.assertEqual(kwargs["ConditionExpression"], "attribute_not_exists(pk)")
        self.assertEqual(out["version"], 1)

    def test_mutate_retries_on_conflict(self):
        store = self.build(max_retries=3)
        self.table.get_item.side_effect = [
            {"Item": {"pk": "EVENT#1", "sk": "META", "version": 1}},
            {"Item": {"pk": "EVENT#1", "sk": "META", "version": 2}},
        ]
        self.table.put_item.side_effect = [conflict(), None]
        out = store.mutate("EVENT#1", "META", lambda cur: {**cur, "title": "y"})

        self.assertEqual(self.table.put_item.call_count, 2)
        last = self.table.put_item.call_args.kwargs
        self.assertEqual(last["ExpressionAttributeValues"], {":v": 2})
        self.assertEqual(out["version"], 3)

    def test_mutate_gives_up_after_max_retries(self):
        store = self.build(max_retries=2)
        self.table.get_item.return_value = {"Item": {"pk": "EVENT#1", "sk": "META", "version": 1}}
        self.table.put_item.side_effect = conflict()
        with self.assertRaises(ClientError):
            store.mutate("EVENT#1", "META", lambda cur: cur)
        self.assertEqual(self.table.put_item.call_count, 2)

    def test_delete_many_uses_batch_writer(self):
        store = self.build()
        batch = MagicMock()
        self.table.batch_writer.return_value.__enter__.return_value = batch
        self.assertEqual(store.delete_many([("EVENT#1", "MEMBER#a"), ("EVENT#1", "NOTIFY#a")]), 2)
        self.assertEqual(batch.delete_item.call_count, 2)


class TestMemoryStore(unittest.TestCase):
    def test_items_are_copied(self):
        store = MemoryStore()
        item = {"pk": "a", "sk": "b", "tags": ["x"]}
        store.put(item)
        item["tags"].append("y")
        self.assertEqual(store.get("a", "b")["tags"], ["x"])

    def test_concurrent_mutations_are_serialized(self):
        store = MemoryStore()

        def bump(current):
            row = current or {"n": 0}
            row["n"] += 1
            return row

        threads = [threading.Thread(target=lambda: [store.mutate("c", "n", bump) for _ in range(50)]) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        self.assertEqual(store.get("c", "n")["n"], 200)
        self.assertEqual(store.get("c", "n")["version"], 200)
