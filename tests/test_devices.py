from __future__ import annotations

import pytest

from wattch_sync.devices import LoadCategory, classify, is_device_key, load_type


@pytest.mark.parametrize(
    ("device_id", "expected"),
    [
        ("ESP1", LoadCategory.LIGHT),
        ("ESP1_4", LoadCategory.LIGHT),
        ("ESP2_3", LoadCategory.MEDIUM),
        ("ESP3", LoadCategory.HEAVY),
        ("ESP4_12", LoadCategory.UNIVERSAL),
        ("ESP5", LoadCategory.UNKNOWN),
        ("ESP", LoadCategory.UNKNOWN),
        ("", LoadCategory.UNKNOWN),
        ("esp1", LoadCategory.UNKNOWN),
    ],
)
def test_classify_known_prefixes(device_id: str, expected: LoadCategory) -> None:
    assert classify(device_id) is expected


def test_classify_prefers_longest_prefix_regardless_of_table_order() -> None:
    table = [
        ("ESP1", LoadCategory.LIGHT),
        ("ESP12", LoadCategory.HEAVY),
    ]
    assert classify("ESP12_1", table) is LoadCategory.HEAVY
    assert classify("ESP13", table) is LoadCategory.LIGHT


def test_classify_equal_length_overlap_keeps_first_entry() -> None:
    table = [
        ("ESP9", LoadCategory.MEDIUM),
        ("ESP9", LoadCategory.HEAVY),
    ]
    assert classify("ESP9_1", table) is LoadCategory.MEDIUM


def test_load_type_wire_values() -> None:
    assert load_type("ESP2_3") == "medium"
    assert load_type("ESP5") is None


def test_is_device_key_filters_non_device_nodes() -> None:
    assert is_device_key("ESP1") is True
    assert is_device_key("ESP5_2") is True
    assert is_device_key("OTHER") is False
    assert is_device_key("meta") is False
    assert is_device_key(1) is False
