#!/usr/bin/env python3
"""
ORPHANSCAN RANGE PREDICATE BUILDER
----------------------------------
Turns a chunk's compound [lower, upper) boundary into a MongoDB query
document that selects exactly the documents whose shard key falls inside
the range under lexicographic ordering.

For a key (f1..fn), the lower side is a disjunction of n alternatives:
alternative k pins f1..fk-1 to their lower values and requires fk to be
strictly greater, except the deepest one which is inclusive ($gte).
The upper side has the same shape with $lt at every depth.

Author: OrphanScan Team
Date: 2026-10-19
"""

from typing import Any, Dict, List, Mapping, Sequence, Tuple, Union

from orphanscan.core.errors import InvalidChunkBoundary
from orphanscan.core.models import Bound, to_bound

RawBound = Union[Mapping[str, Any], Sequence[Tuple[str, Any]]]


def bound_clauses(bound: Bound, strict_op: str, final_op: str) -> List[Dict[str, Any]]:
    """
    Builds the alternatives for one side of a range, deepest field last.

    Args:
        bound: Ordered (field, value) pairs.
        strict_op: Operator used for every field but the last ("$gt" / "$lt").
        final_op: Operator used for the last field ("$gte" / "$lt").
    """
    if not bound:
        raise InvalidChunkBoundary("Chunk boundary has no fields")

    (name, value), rest = bound[0], bound[1:]
    if not rest:
        return [{name: {final_op: value}}]

    clauses: List[Dict[str, Any]] = [{name: {strict_op: value}}]
    for deeper in bound_clauses(rest, strict_op, final_op):
        clause = {name: value}
        clause.update(deeper)
        clauses.append(clause)
    return clauses


def _disjunction(clauses: List[Dict[str, Any]]) -> Dict[str, Any]:
    if len(clauses) == 1:
        return clauses[0]
    return {"$or": clauses}


def _check_alignment(lower: Bound, upper: Bound):
    if not lower or not upper:
        raise InvalidChunkBoundary("Chunk boundary has no fields")
    lower_fields = [name for name, _ in lower]
    upper_fields = [name for name, _ in upper]
    if lower_fields != upper_fields:
        raise InvalidChunkBoundary(
            f"Chunk bounds disagree on key fields: {lower_fields} vs {upper_fields}"
        )


def build_range_predicate(lower: RawBound, upper: RawBound) -> Dict[str, Any]:
    """
    Query document matching lower <= key(doc) < upper.

    Raises:
        InvalidChunkBoundary: a bound is empty or the two bounds do not
        name the same fields in the same order.
    """
    try:
        lower_bound, upper_bound = to_bound(lower), to_bound(upper)
    except (TypeError, ValueError) as e:
        raise InvalidChunkBoundary(f"Malformed chunk boundary: {e}")

    _check_alignment(lower_bound, upper_bound)

    return {
        "$and": [
            _disjunction(bound_clauses(lower_bound, "$gt", "$gte")),
            _disjunction(bound_clauses(upper_bound, "$lt", "$lt")),
        ]
    }


def check_key_pattern(key: RawBound):
    """
    Rejects shard keys that range predicates cannot express.

    Chunk bounds on a hashed field hold hash values, not field values, so a
    predicate on the raw field would select the wrong documents.

    Raises:
        InvalidChunkBoundary: a key field is hashed.
    """
    try:
        pattern = to_bound(key)
    except (TypeError, ValueError) as e:
        raise InvalidChunkBoundary(f"Malformed shard key pattern: {e}")
    hashed = [name for name, kind in pattern if kind == "hashed"]
    if hashed:
        raise InvalidChunkBoundary(
            f"Shard key field(s) {', '.join(hashed)} are hashed and cannot be range-counted"
        )
