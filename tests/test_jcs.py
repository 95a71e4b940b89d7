from __future__ import annotations

import hashlib
import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum

import pytest

from cognategov.ledger.jcs import CanonicalizationError, canonical_bytes, canonical_text, hex_digest


class _Level(Enum):
    HIGH = "high"


# Golden vectors: the digest is over the canonical bytes shown.
VECTORS = [
    ({"b": 1, "a": 2}, b'{"a":2,"b":1}', "d3626ac30a87e6f7a6428233b3c68299976865fa5508e4267c5415c76af7a772"),
    # U+212B (Angstrom sign) NFC-normalizes to U+00C5
    ({"\u212b": 1}, b'{"\xc3\x85":1}', "3511e6515fb12a08ba57db370f587800037cc69c6c255bac9e16fbcba6de497f"),
    ([3, 2, 1], b"[3,2,1]", "30c8681f9b840aceee56b737f3b126ae67ec4eb71d2881db831f86014fba016d"),
    ({"z": [1, {"a": "x"}]}, b'{"z":[1,{"a":"x"}]}', "c53c1456bf2048c7d5c42ef8e332d78b0b44f0e0267fd559e14b33539e36832b"),
    ({"n": Decimal("1.2300")}, b'{"n":1.23}', "c2f4a8099bdaf483ac3f465590b90ae2156f94d0d32c194bfbb06ca2289ad25f"),
    ({"n": Decimal("1E+2")}, b'{"n":100}', "b39022c4ed96525c42cd0e7ce55308533962a655f1c19d5dac2f03e9dd995b2c"),
]


def test_golden_vectors_bytes_and_digest() -> None:
    for value, expected_bytes, expected_sha in VECTORS:
        assert canonical_bytes(value) == expected_bytes
        assert hex_digest(value) == expected_sha
        assert json.loads(expected_bytes) == json.loads(canonical_bytes(value))


def test_floats_use_shortest_fixed_point_form() -> None:
    assert canonical_text({"a": 0.1, "b": 2.0, "c": 1e-7, "d": -0.0}) == '{"a":0.1,"b":2,"c":0.0000001,"d":0}'


def test_float_output_is_stable_after_reparse() -> None:
    text = canonical_text({"score": 0.87, "cost": 12.5, "big": 1e21})
    assert canonical_text(json.loads(text)) == text


def test_rejects_non_finite_numbers() -> None:
    with pytest.raises(CanonicalizationError):
        canonical_bytes({"n": float("nan")})
    with pytest.raises(CanonicalizationError):
        canonical_bytes({"n": Decimal("Infinity")})


def test_keys_colliding_after_normalization_are_rejected() -> None:
    with pytest.raises(CanonicalizationError, match="duplicate key"):
        canonical_bytes({"\u212b": 1, "\u00c5": 2})


def test_rejects_non_string_keys_and_unknown_types() -> None:
    with pytest.raises(CanonicalizationError, match="keys must be strings"):
        canonical_bytes({1: "x"})
    with pytest.raises(CanonicalizationError, match="not JSON-serializable"):
        canonical_bytes({"x": object()})


def test_datetimes_and_enums() -> None:
    moment = datetime(2026, 1, 25, 13, 30, tzinfo=timezone(timedelta(hours=1)))
    assert canonical_text({"ts": moment, "level": _Level.HIGH}) == '{"level":"high","ts":"2026-01-25T13:30:00+01:00"}'
    with pytest.raises(CanonicalizationError, match="naive"):
        canonical_text({"ts": datetime(2026, 1, 25, 12, 0)})


def test_digest_ignores_insertion_order() -> None:
    one = {"b": 1, "a": {"y": [3, {"z": Decimal("01.2300"), "a": 2}], "x": "value"}}
    two = {"a": {"x": "value", "y": [3, {"a": 2, "z": Decimal("1.230")}]}, "b": 1}
    assert canonical_text(one) == canonical_text(two)
    assert hex_digest(one) == hex_digest(two)


def test_hex_digest_honours_algorithm() -> None:
    assert hex_digest([3, 2, 1], "sha512") == hashlib.sha512(b"[3,2,1]").hexdigest()
