from __future__ import annotations

import pytest

from goldventory.keys import encode
from goldventory.payloads import Branch, Items, Leaf, is_empty, sanitize, unwrap, wrap


def test_wrap_tags_each_level() -> None:
    node = wrap({"a": {"b": 1}, "c": [1, {"d": None}]})
    assert isinstance(node, Branch)
    assert node.children["a"] == Branch({"b": Leaf(1)})
    assert node.children["c"] == Items([Leaf(1), Branch({"d": Leaf(None)})])


def test_sanitize_encodes_keys_at_every_level() -> None:
    payload = {"Band": {"": {"2.5g": 3}, "S/1": {"1.0g": None}}}
    assert sanitize(payload, encode) == {
        "Band": {"__default": {"2_5g": 3}, "S_1": {"1_0g": None}}
    }


def test_sanitize_returns_plain_copies() -> None:
    original = {"a": {"b": [1, 2]}}
    copied = sanitize(original)
    assert copied == original
    copied["a"]["b"].append(3)
    assert original["a"]["b"] == [1, 2]


def test_is_empty() -> None:
    assert is_empty(wrap({}))
    assert is_empty(wrap([]))
    assert not is_empty(wrap({"a": 1}))
    assert not is_empty(Leaf(None))


def test_unwrap_rejects_unknown_nodes() -> None:
    with pytest.raises(TypeError):
        unwrap({"not": "a node"})
