import threading
import unittest
import uuid

from sample_data import MemorySource, employees_db, shop_db

from relgraph.detect.configured import parse_relationships
from relgraph.detect.detector import RelationshipDetector, RelationshipIndex, detect_schema, merge_candidates
from relgraph.models import RelationshipCandidate
from relgraph.source.sqlite_source import SqliteSource, connect


def _cand(local_key, target, confidence, method, source="orders"):
    return RelationshipCandidate(
        source_entity=source,
        local_key=local_key,
        target_entity=target,
        target_key="id",
        kind="many-to-one",
        confidence=confidence,
        method=method,
    )


class TestDetectorOnSqlite(unittest.TestCase):
    def setUp(self):
        self.conn = shop_db()
        self.source = SqliteSource(self.conn)
        self.detector = RelationshipDetector()

    def tearDown(self):
        self.conn.close()

    def test_undeclared_foreign_key_is_inferred(self):
        cands = self.detector.detect("orders", self.source.list_fields("orders"), self.source)
        top = [c for c in cands if c.local_key == "user_id" and c.rank == 0]
        self.assertEqual(len(top), 1)
        c = top[0]
        self.assertEqual(c.target_entity, "users")
        self.assertEqual(c.target_key, "id")
        self.assertGreaterEqual(c.confidence, 0.7)
        self.assertEqual(c.kind, "many-to-one")
        self.assertEqual(c.method, "statistical")
        self.assertEqual(c.evidence, ("statistical", "value-shape", "name-pattern"))

    def test_merge_keeps_max_not_sum(self):
        cands = self.detector.detect("orders", self.source.list_fields("orders"), self.source)
        for c in cands:
            self.assertGreaterEqual(c.confidence, 0.0)
            self.assertLessEqual(c.confidence, 1.0)
        self.assertEqual(len({c.pair for c in cands}), len(cands))

    def test_non_reference_columns_produce_nothing(self):
        cands = self.detector.detect("orders", self.source.list_fields("orders"), self.source)
        self.assertEqual({c.local_key for c in cands}, {"user_id"})
        self.assertEqual(self.detector.detect("users", self.source.list_fields("users"), self.source), [])

    def test_declared_foreign_key(self):
        conn = connect(":memory:")
        conn.executescript(
            """
            CREATE TABLE authors (id INTEGER PRIMARY KEY, name TEXT);
            CREATE TABLE books (id INTEGER PRIMARY KEY, written_by INTEGER REFERENCES authors(id), title TEXT);
            INSERT INTO authors VALUES (1, 'Le Guin');
            INSERT INTO books VALUES (10, 1, 'The Dispossessed');
            """
        )
        try:
            src = SqliteSource(conn)
            cands = self.detector.detect("books", src.list_fields("books"), src)
            top = [c for c in cands if c.rank == 0 and c.local_key == "written_by"]
            self.assertEqual(top[0].target_entity, "authors")
            self.assertEqual(top[0].method, "declared")
            self.assertEqual(top[0].confidence, 1.0)
        finally:
            conn.close()

    def test_empty_entity_yields_nothing(self):
        conn = connect(":memory:")
        conn.executescript(
            """
            CREATE TABLE users (id INTEGER PRIMARY KEY, name TEXT);
            CREATE TABLE orders (id INTEGER PRIMARY KEY, user_id INTEGER, buyer INTEGER REFERENCES users(id));
            INSERT INTO users VALUES (1, 'Ada');
            INSERT INTO users VALUES (2, 'Grace');
            """
        )
        try:
            src = SqliteSource(conn)
            self.assertEqual(self.detector.detect("orders", src.list_fields("orders"), src), [])
            self.assertEqual(detect_schema(src).candidates, ())
        finally:
            conn.close()

    def test_self_reference(self):
        conn = employees_db()
        try:
            src = SqliteSource(conn)
            cands = self.detector.detect("employees", src.list_fields("employees"), src)
            self.assertEqual(len(cands), 1)
            self.assertEqual(cands[0].local_key, "manager_id")
            self.assertEqual(cands[0].target_entity, "employees")
        finally:
            conn.close()

    def test_detect_schema_index(self):
        index = detect_schema(self.source)
        self.assertEqual(len(index.candidates), 1)
        self.assertEqual(index.primary_keys, {"orders": "id", "users": "id"})

        rels = index.relations_for("users")
        self.assertEqual([r.name for r in rels], ["orders"])
        self.assertTrue(rels[0].reverse)
        self.assertEqual(rels[0].candidate.local_key, "id")
        self.assertEqual(rels[0].candidate.target_key, "user_id")
        self.assertEqual(rels[0].candidate.kind, "one-to-many")

        fwd = index.relations_for("orders")
        self.assertEqual([r.name for r in fwd], ["users"])
        self.assertFalse(fwd[0].reverse)

    def test_threshold_filters(self):
        index = detect_schema(self.source, threshold=1.0)
        self.assertEqual(len(index.candidates), 1)
        conn = connect(":memory:")
        conn.executescript(
            """
            CREATE TABLE customers (id INTEGER PRIMARY KEY);
            CREATE TABLE invoices (id INTEGER PRIMARY KEY, customerId INTEGER);
            INSERT INTO invoices VALUES (1, 900);
            """
        )
        try:
            # Name match only (0.6): below a 0.7 threshold.
            src = SqliteSource(conn)
            self.assertEqual(detect_schema(src, threshold=0.7).candidates, ())
            self.assertEqual(len(detect_schema(src, threshold=0.5).candidates), 1)
        finally:
            conn.close()


class TestDetectorPasses(unittest.TestCase):
    def setUp(self):
        self.detector = RelationshipDetector()

    def _detect(self, source, entity):
        return self.detector.detect(entity, source.list_fields(entity), source)

    def test_name_pattern_only(self):
        src = MemorySource(
            {
                "customers": [],
                "orders": [{"id": 1, "customerId": 900}, {"id": 2, "customerId": 901}],
            },
            {"customers": "id", "orders": "id"},
        )
        cands = self._detect(src, "orders")
        self.assertEqual(len(cands), 1)
        self.assertEqual(cands[0].target_entity, "customers")
        self.assertEqual(cands[0].method, "name-pattern")
        self.assertEqual(cands[0].confidence, 0.6)

    def test_value_shape_uuid(self):
        accounts = [{"id": str(uuid.uuid4())} for _ in range(3)]
        src = MemorySource(
            {
                "accounts": accounts,
                "events": [{"id": i, "owner": str(uuid.uuid4())} for i in range(5)],
            },
            {"accounts": "id", "events": "id"},
        )
        cands = self._detect(src, "events")
        self.assertEqual(len(cands), 1)
        self.assertEqual(cands[0].target_entity, "accounts")
        self.assertEqual(cands[0].method, "value-shape")
        self.assertEqual(cands[0].confidence, 1.0)

    def test_numeric_shape_needs_reference_name(self):
        src = MemorySource(
            {
                "products": [{"id": i} for i in range(1, 6)],
                "lines": [{"id": 100 + i, "quantity": i} for i in range(1, 6)],
            },
            {"products": "id", "lines": "id"},
        )
        # quantity overlaps product ids perfectly, so only the statistical pass can fire
        cands = self._detect(src, "lines")
        self.assertEqual([c.method for c in cands], ["statistical"])

    def test_statistical_overlap(self):
        src = MemorySource(
            {
                "customers": [{"id": f"c{i}"} for i in range(1, 6)],
                "sales": [{"id": i, "buyer": f"c{i}"} for i in range(1, 4)],
            },
            {"customers": "id", "sales": "id"},
        )
        cands = self._detect(src, "sales")
        self.assertEqual(len(cands), 1)
        self.assertEqual(cands[0].target_entity, "customers")
        self.assertEqual(cands[0].method, "statistical")
        self.assertEqual(cands[0].confidence, 1.0)

    def test_ranking_across_targets(self):
        people = [str(uuid.uuid4()) for _ in range(4)]
        src = MemorySource(
            {
                "assets": [{"id": i, "owner_ref": people[i % 4]} for i in range(6)],
                "companies": [{"id": str(uuid.uuid4())} for _ in range(3)],
                "people": [{"id": p} for p in people],
            },
            {"assets": "id", "companies": "id", "people": "id"},
        )
        cands = self._detect(src, "assets")
        self.assertEqual([(c.target_entity, c.rank) for c in cands], [("people", 0), ("companies", 1)])
        self.assertEqual(cands[0].method, "statistical")
        self.assertEqual(cands[1].method, "value-shape")

    def test_unsampleable_entity(self):
        src = MemorySource(
            {"customers": [{"id": 1}], "orders": [{"id": 1, "customer_id": 1}]},
            {"customers": "id", "orders": "id"},
            fail_sample={"orders", "customers"},
        )
        self.assertEqual(self._detect(src, "orders"), [])
        self.assertEqual(self.detector.detect("orders", [], src), [])

    def test_catalog_failure_yields_empty_index(self):
        src = MemorySource({"orders": [{"id": 1}]}, {"orders": "id"}, fail_entities=True)
        index = detect_schema(src)
        self.assertEqual(index.candidates, ())

    def test_cancelled_detection(self):
        cancel = threading.Event()
        cancel.set()
        src = MemorySource(
            {"customers": [{"id": 1}], "orders": [{"id": 1, "customer_id": 1}]},
            {"customers": "id", "orders": "id"},
        )
        self.assertEqual(detect_schema(src, cancel=cancel).candidates, ())


class TestMergeCandidates(unittest.TestCase):
    def test_max_confidence_wins(self):
        merged = merge_candidates(
            [
                _cand("user_id", "users", 0.6, "name-pattern"),
                _cand("user_id", "users", 0.9, "statistical"),
                _cand("user_id", "users", 0.8, "value-shape"),
            ]
        )
        self.assertEqual(len(merged), 1)
        self.assertEqual(merged[0].confidence, 0.9)
        self.assertEqual(merged[0].method, "statistical")
        self.assertEqual(merged[0].evidence, ("statistical", "value-shape", "name-pattern"))

    def test_priority_breaks_confidence_ties(self):
        merged = merge_candidates(
            [
                _cand("ref", "a", 0.8, "name-pattern"),
                _cand("ref", "b", 0.8, "statistical"),
            ]
        )
        self.assertEqual([(c.target_entity, c.rank) for c in merged], [("b", 0), ("a", 1)])

    def test_ranks_are_per_local_key(self):
        merged = merge_candidates(
            [
                _cand("a_id", "a", 0.6, "name-pattern"),
                _cand("b_id", "b", 0.9, "statistical"),
            ]
        )
        self.assertEqual({c.rank for c in merged}, {0})
        self.assertEqual(merged[0].local_key, "b_id")

    def test_confidence_is_clamped(self):
        self.assertEqual(_cand("x", "y", 1.7, "statistical").confidence, 1.0)
        self.assertEqual(_cand("x", "y", -0.2, "statistical").confidence, 0.0)


class TestRelationshipIndex(unittest.TestCase):
    def test_reverse_name_collision(self):
        c = RelationshipCandidate(
            source_entity="employees",
            local_key="manager_id",
            target_entity="employees",
            target_key="id",
            kind="many-to-one",
            confidence=1.0,
            method="statistical",
        )
        index = RelationshipIndex(candidates=(c,), primary_keys={"employees": "id"})
        names = [r.name for r in index.relations_for("employees")]
        self.assertEqual(names, ["employees", "employees_by_manager_id"])
        self.assertEqual(index.relations_for("nobody"), [])

    def test_configured_relations_come_first(self):
        detected = RelationshipCandidate(
            source_entity="orders",
            local_key="user_id",
            target_entity="users",
            target_key="id",
            kind="many-to-one",
            confidence=0.9,
            method="statistical",
        )
        other = RelationshipCandidate(
            source_entity="orders",
            local_key="shipper_id",
            target_entity="users",
            target_key="id",
            kind="many-to-one",
            confidence=0.9,
            method="statistical",
        )
        cfg = parse_relationships(
            {
                "users": {"purchases": {"entity": "orders", "type": "one-to-many", "localKey": "id", "foreignKey": "user_id"}},
                "orders": {"buyer": {"entity": "users", "localKey": "user_id", "foreignKey": "id"}},
            }
        )
        index = RelationshipIndex(candidates=(detected, other)).with_relationships(cfg)

        users = index.relations_for("users")
        self.assertEqual([r.name for r in users], ["purchases", "orders"])
        self.assertTrue(users[0].reverse)
        self.assertEqual(users[0].candidate.method, "declared")
        self.assertEqual(users[1].candidate.target_key, "shipper_id")

        orders = index.relations_for("orders")
        self.assertEqual([(r.name, r.candidate.local_key) for r in orders], [("buyer", "user_id"), ("users", "shipper_id")])
        self.assertEqual(orders[0].candidate.confidence, 1.0)


if __name__ == "__main__":
    unittest.main()
