from __future__ import annotations

import pytest

from goldventory.exceptions import ValidationError
from goldventory.keys import (
    DEFAULT_TOKEN,
    StockKey,
    clean_label,
    decode,
    encode,
    is_reserved,
    split_weight_key,
)


def test_encode_empty_returns_default_token() -> None:
    assert encode("") == DEFAULT_TOKEN
    assert encode("   ") == DEFAULT_TOKEN


def test_encode_replaces_unsafe_characters() -> None:
    assert encode("a.b/c") == "a_b_c"
    assert encode(" 2.5g ") == "2_5g"


@pytest.mark.parametrize("raw", ["", "Rings", "a.b/c", "2.5 g", "__default", "x_y"])
def test_encode_is_idempotent(raw: str) -> None:
    assert encode(encode(raw)) == encode(raw)


def test_decode_restores_periods_and_default() -> None:
    assert decode("2_5g") == "2.5g"
    assert decode(DEFAULT_TOKEN) == ""


def test_decode_is_lossy_for_literal_underscores() -> None:
    assert decode(encode("gold_plated")) == "gold.plated"
    assert encode(decode(encode("gold_plated"))) == encode("gold_plated")


def test_is_reserved() -> None:
    assert is_reserved("__default")
    assert is_reserved("__meta")
    assert is_reserved("shared")
    assert not is_reserved("2g")


def test_clean_label_rejects_empty_and_separator() -> None:
    assert clean_label("  Band ", "item") == "Band"
    assert clean_label("", "sub_item", allow_empty=True) == ""
    with pytest.raises(ValidationError):
        clean_label(" ", "item")
    with pytest.raises(ValidationError) as excinfo:
        clean_label("a|b", "weight")
    assert excinfo.value.code == "invalid_key"


def test_stock_key_ids() -> None:
    key = StockKey("Rings", "Band", "", "2.5g")
    assert key.product_id == "Rings"
    assert key.weight_key == "Band|__default|2_5g"

    variant = StockKey("Rings", "Band", "S1", "2g")
    assert variant.weight_key == "Band|S1|2g"


def test_stock_key_from_ids_round_trip() -> None:
    key = StockKey.from_ids("Rings", "Band|__default|2_5g")
    assert key == StockKey("Rings", "Band", "", "2.5g")


def test_stock_key_rejects_empty_segments() -> None:
    with pytest.raises(ValidationError):
        StockKey("", "Band", "S1", "2g")
    with pytest.raises(ValidationError):
        StockKey("Rings", "Band", "S1", " ")


def test_split_weight_key_requires_three_parts() -> None:
    assert split_weight_key("Band|S1|2g") == ("Band", "S1", "2g")
    with pytest.raises(ValidationError):
        split_weight_key("Band|2g")
    with pytest.raises(ValidationError):
        split_weight_key("Band||2g")
