# tests/unit/ledger/test_unit_keys.py - v1
"""Tests for ledger/keys.py - key derivation stability."""

from __future__ import annotations

import hashlib

from prospector.ledger.keys import canonical_json, hash_input, make_key


class TestCanonicalJson:
    def test_sorted_at_every_depth(self):
        assert canonical_json({"b": 1, "a": {"d": 2, "c": 3}}) == '{"a":{"c":3,"d":2},"b":1}'


class TestHashInput:
    def test_field_order_irrelevant(self):
        assert hash_input({"name": "A", "city": "B"}) == hash_input({"city": "B", "name": "A"})

    def test_different_inputs_differ(self):
        assert hash_input({"name": "A"}) != hash_input({"name": "B"})

    def test_truncated_hex(self):
        h = hash_input({"x": 1})
        assert len(h) == 16
        int(h, 16)


class TestMakeKey:
    def test_matches_documented_derivation(self):
        expected = hashlib.sha256(b"item-1:perplexity:abcd").hexdigest()
        assert make_key("item-1", "perplexity", "abcd") == expected

    def test_deterministic(self):
        assert make_key("i", "s", "h") == make_key("i", "s", "h")

    def test_each_component_matters(self):
        base = make_key("i", "s", "h")
        assert base != make_key("j", "s", "h")
        assert base != make_key("i", "t", "h")
        assert base != make_key("i", "s", "g")
