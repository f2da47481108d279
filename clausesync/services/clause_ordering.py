"""
Clause identity and ordering

canonical_clause_key: store key for a clause ("4.2(a)" -> "C.4.2")
sort_clauses: dotted-numeric segment order used after every merge, read and push
"""

import re
from functools import cmp_to_key
from itertools import zip_longest
from typing import Iterable, List, Tuple, TypeVar, Union

from clausesync.database.schemas import Clause

KEY_PREFIX = "C."

_NON_KEY_CHARS = re.compile(r"[^0-9.]")
_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")
_NON_ALNUM = re.compile(r"[^a-zA-Z0-9]")

T = TypeVar("T")


def canonical_clause_key(clause_number: str) -> str:
    """Strip everything outside [0-9.] and prefix "C."; differently punctuated numbers may collide"""
    return KEY_PREFIX + _NON_KEY_CHARS.sub("", str(clause_number or ""))


def _segment_value(segment: str) -> int:
    match = _LEADING_INT.match(segment)
    return int(match.group(1)) if match else 0


def number_segments(clause_number: str) -> Tuple[int, ...]:
    """Leading integer of each dotted segment; a segment without digits counts as 0"""
    return tuple(_segment_value(part) for part in str(clause_number or "").split("."))


def compare_clause_numbers(a: str, b: str) -> int:
    """Segment-by-segment comparison, missing trailing segments treated as 0"""
    for left, right in zip_longest(number_segments(a), number_segments(b), fillvalue=0):
        if left != right:
            return -1 if left < right else 1
    return 0


def _number_of(item: Union[Clause, dict, str]) -> str:
    if isinstance(item, Clause):
        return item.clause_number
    if isinstance(item, dict):
        return str(item.get("clause_number") or "")
    return str(item)


def sort_clauses(clauses: Iterable[T]) -> List[T]:
    """Stable canonical sort; accepts Clause objects, dicts or bare numbers"""
    compare = cmp_to_key(lambda x, y: compare_clause_numbers(_number_of(x), _number_of(y)))
    return sorted(clauses, key=compare)


def sanitize_identifier(name: str) -> str:
    """Contract id alphabet: ASCII letters and digits only"""
    return _NON_ALNUM.sub("", name or "")


def find_key_collisions(clauses: Iterable[Clause]) -> dict:
    """Keys shared by clauses whose free-text numbers differ"""
    seen = {}
    for clause in clauses:
        seen.setdefault(canonical_clause_key(clause.clause_number), set()).add(clause.clause_number)
    return {key: sorted(numbers) for key, numbers in seen.items() if len(numbers) > 1}
