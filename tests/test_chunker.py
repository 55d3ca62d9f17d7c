import random
import unittest
from datetime import datetime, timezone

from relgraph.context.chunker import ContextChunker, split_spans, split_text
from relgraph.context.flatten import flatten_graph
from relgraph.errors import ConfigInvalid
from relgraph.models import EntityGraph, EntityGraphNode, NodeMetadata


def _node(entity, uid, data, depth=0, timestamp=None):
    return EntityGraphNode(entity, uid, data, NodeMetadata(depth=depth, source="relational", timestamp=timestamp))


def _text(n_words, seed=7):
    rng = random.Random(seed)
    words = ["alpha", "beta", "gamma", "delta", "epsilon", "zeta"]
    parts = []
    for i in range(n_words):
        parts.append(rng.choice(words))
        parts.append(rng.choice([" ", " ", " ", ". ", "\n", "\n\n"]))
    return "".join(parts)


class TestSplitSpans(unittest.TestCase):
    def test_hard_cuts_without_breaks(self):
        text = "x" * 250
        self.assertEqual(split_spans(text, 100, 20), [(0, 100), (80, 180), (160, 250)])
        self.assertEqual([len(c) for c in split_text(text, 100, 20)], [100, 100, 90])

    def test_short_text_is_one_chunk(self):
        self.assertEqual(split_spans("hello", 100, 20), [(0, 5)])
        self.assertEqual(split_spans("", 100, 20), [(0, 0)])

    def test_prefers_late_natural_break(self):
        text = "a" * 75 + "\n\n" + "b" * 100
        self.assertEqual(split_spans(text, 100, 10), [(0, 76), (66, 166), (156, 177)])

    def test_ignores_early_break(self):
        text = "a" * 10 + " " + "b" * 200
        self.assertEqual(split_spans(text, 100, 0)[0], (0, 100))

    def test_size_and_coverage(self):
        text = _text(400)
        for size, overlap in [(50, 10), (80, 0), (120, 60), (30, 29)]:
            spans = split_spans(text, size, overlap)
            self.assertEqual(spans[0][0], 0)
            self.assertEqual(spans[-1][1], len(text))
            for (s0, e0), (s1, e1) in zip(spans, spans[1:]):
                self.assertLess(s0, s1)
                self.assertLessEqual(s1, e0)
                self.assertLessEqual(e0 - s1, overlap)
            for s, e in spans:
                self.assertLessEqual(e - s, size)
                self.assertGreater(e, s)

    def test_invalid_sizes(self):
        for size, overlap in [(100, 100), (100, 150), (0, 0), (100, -1)]:
            with self.assertRaises(ConfigInvalid):
                split_spans("abc", size, overlap)


class TestContextChunker(unittest.TestCase):
    def setUp(self):
        self.ts = datetime(2024, 1, 1, tzinfo=timezone.utc)
        root = _node("users", "1", {"bio": _text(120)}, timestamp=self.ts)
        order = _node("orders", "101", {"total": 25}, depth=1)
        order.children["items"] = [_node("items", "5", {"sku": "A1"}, depth=2)]
        root.children["orders"] = [order]
        root.children["profile"] = [_node("profiles", "1", {"theme": "dark"}, depth=1)]
        self.root = root
        self.graph = EntityGraph(root=root, namespace="users:1", nodes=[root])
        self.chunker = ContextChunker()

    def test_chunks_cover_flattened_text(self):
        chunks = self.chunker.chunk(self.graph, 200, 40, 2)
        text = flatten_graph(self.root, 2)
        self.assertGreater(len(chunks), 1)
        for i, c in enumerate(chunks):
            self.assertEqual(c.id, f"users:1:chunk:{i}")
            self.assertEqual(c.namespace, "users:1")
            self.assertEqual(c.metadata.chunk_index, i)
            self.assertEqual(c.metadata.total_chunks, len(chunks))
            self.assertEqual(c.content, text[c.metadata.start : c.metadata.end])
            self.assertLessEqual(len(c.content), 200)
            self.assertEqual(c.metadata.entity, "users")
            self.assertEqual(c.metadata.uid, "1")
            self.assertEqual(c.metadata.timestamp, self.ts)

    def test_relations_are_graph_wide(self):
        chunks = self.chunker.chunk(self.graph, 200, 40, 2)
        for c in chunks:
            self.assertEqual(c.metadata.relations, ("orders", "profile", "items"))

    def test_single_chunk(self):
        root = _node("users", "2", {"name": "Grace"})
        chunks = self.chunker.chunk(root, 1000, 200, 2)
        self.assertEqual(len(chunks), 1)
        self.assertEqual(chunks[0].content, flatten_graph(root, 2))
        self.assertEqual(chunks[0].id, "users:2:chunk:0")
        self.assertEqual(chunks[0].metadata.relations, ())

    def test_idempotent(self):
        a = self.chunker.chunk(self.graph, 150, 30, 1)
        b = self.chunker.chunk(self.graph, 150, 30, 1)
        self.assertEqual(a, b)

    def test_namespace_from_node_is_escaped(self):
        root = _node("a:b", "1", {"x": 1})
        self.assertEqual(self.chunker.chunk(root, 1000, 0, 0)[0].id, "a%3Ab:1:chunk:0")

    def test_invalid_parameters(self):
        for args in [(100, 100, 1), (0, 0, 1), (100, -5, 1), (100, 10, -1)]:
            with self.assertRaises(ConfigInvalid):
                self.chunker.chunk(self.graph, *args)

    def test_to_dict(self):
        d = self.chunker.chunk(self.graph, 200, 40, 2)[0].to_dict()
        self.assertEqual(d["id"], "users:1:chunk:0")
        self.assertEqual(d["metadata"]["chunkIndex"], 0)
        self.assertEqual(d["metadata"]["timestamp"], "2024-01-01T00:00:00.000Z")
        self.assertEqual(d["metadata"]["relations"], ["orders", "profile", "items"])


if __name__ == "__main__":
    unittest.main()
