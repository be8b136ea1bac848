"""Tagged representation of persistence payloads.

Documents read from or written to the store are arbitrary JSON-like trees.
They are lifted into :class:`Leaf` / :class:`Branch` / :class:`Items` nodes
so the sanitising pass can transform keys and values in one recursive walk,
then lowered back to plain ``dict`` / ``list`` values for the JSON column.
"""
from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from functools import singledispatch
from typing import Any, Union


@dataclass(frozen=True)
class Leaf:
    value: Any


@dataclass(frozen=True)
class Branch:
    children: dict[str, "Node"] = field(default_factory=dict)


@dataclass(frozen=True)
class Items:
    items: list["Node"] = field(default_factory=list)


Node = Union[Leaf, Branch, Items]

KeyTransform = Callable[[str], str]


def _identity(key: str) -> str:
    return key


def wrap(value: Any, key_transform: KeyTransform = _identity) -> Node:
    """Lift ``value`` into tagged nodes, applying ``key_transform`` to every map key."""

    if isinstance(value, Mapping):
        return Branch({key_transform(str(key)): wrap(child, key_transform) for key, child in value.items()})
    if isinstance(value, (list, tuple)):
        return Items([wrap(child, key_transform) for child in value])
    return Leaf(value)


@singledispatch
def unwrap(node: Node) -> Any:
    raise TypeError(f"Unsupported payload node {type(node).__name__}")


@unwrap.register(Leaf)
def _(node: Leaf) -> Any:
    return node.value


@unwrap.register(Branch)
def _(node: Branch) -> Any:
    return {key: unwrap(child) for key, child in node.children.items()}


@unwrap.register(Items)
def _(node: Items) -> Any:
    return [unwrap(child) for child in node.items]


def sanitize(value: Any, key_transform: KeyTransform = _identity) -> Any:
    """Return a plain JSON-compatible copy of ``value`` with transformed keys."""

    return unwrap(wrap(value, key_transform))


def is_empty(node: Node) -> bool:
    if isinstance(node, Branch):
        return not node.children
    if isinstance(node, Items):
        return not node.items
    return False


__all__ = ["Branch", "Items", "Leaf", "Node", "is_empty", "sanitize", "unwrap", "wrap"]
