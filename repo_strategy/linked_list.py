"""
linked_list.py - Singly Linked Key List

The ordering structure shared by both registries: a head pointer, a size
counter, and two key-indexed maps (key -> next key, key -> record). NULL_NODE
terminates the chain and marks the empty list.

Callers that remove while walking must take the next pointer before removing
the current key. remove() returns that pointer for exactly this reason:

    key = chain.head
    prev = NULL_NODE
    while key is not NULL_NODE:
        if done(key):
            key = chain.remove(key, prev)
            continue
        prev, key = key, chain.nodes[key]
"""
from __future__ import annotations
from typing import Any, Callable, Dict, Generic, Hashable, Iterator, Optional, TypeVar

from .core import NULL_NODE

K = TypeVar("K", bound=Hashable)
R = TypeVar("R")


class LinkedKeyList(Generic[K, R]):
    """Ordered map with O(1) head insertion and O(n) bounded scans."""

    def __init__(self):
        self.head: Optional[K] = NULL_NODE
        self.size: int = 0
        self.nodes: Dict[K, Optional[K]] = {}
        self.records: Dict[K, R] = {}

    def __len__(self) -> int:
        return self.size

    def __contains__(self, key: object) -> bool:
        return key in self.records

    def __iter__(self) -> Iterator[K]:
        """Walk keys from head. A fresh iterator re-walks the chain."""
        key = self.head
        while key is not NULL_NODE:
            next_key = self.nodes[key]
            yield key
            key = next_key

    def get(self, key: K) -> Optional[R]:
        return self.records.get(key)

    def next(self, key: K) -> Optional[K]:
        return self.nodes[key]

    def push_front(self, key: K, record: R) -> None:
        if key in self.nodes:
            raise KeyError(f"duplicate key {key!r}")
        self.nodes[key] = self.head
        self.records[key] = record
        self.head = key
        self.size += 1

    def insert_after(self, prev: Optional[K], key: K, record: R) -> None:
        """Link key after prev, or at head when prev is NULL_NODE."""
        if prev is NULL_NODE:
            self.push_front(key, record)
            return
        if key in self.nodes:
            raise KeyError(f"duplicate key {key!r}")
        self.nodes[key] = self.nodes[prev]
        self.nodes[prev] = key
        self.records[key] = record
        self.size += 1

    def insert_sorted(self, key: K, record: R, sort_key: Callable[[R], Any]) -> None:
        """
        Insert keeping the chain ascending by sort_key(record).

        Ties go after existing equal entries, so earlier inserts stay first.
        """
        value = sort_key(record)
        prev = NULL_NODE
        current = self.head
        while current is not NULL_NODE and sort_key(self.records[current]) <= value:
            prev, current = current, self.nodes[current]
        self.insert_after(prev, key, record)

    def update(self, key: K, record: R) -> None:
        """Replace a record in place; ordering is untouched."""
        if key not in self.records:
            raise KeyError(key)
        self.records[key] = record

    def remove(self, key: K, prev: Optional[K]) -> Optional[K]:
        """
        Unlink key and delete its record. Returns the key that followed it.

        prev must be the key immediately before `key` (NULL_NODE for head).
        """
        if key not in self.nodes:
            raise KeyError(key)
        next_key = self.nodes[key]
        if prev is NULL_NODE:
            if self.head != key:
                raise KeyError(f"{key!r} is not the head")
            self.head = next_key
        else:
            if self.nodes.get(prev, NULL_NODE) != key:
                raise KeyError(f"{prev!r} does not precede {key!r}")
            self.nodes[prev] = next_key
        del self.nodes[key]
        del self.records[key]
        self.size -= 1
        return next_key

    def copy(self) -> LinkedKeyList[K, R]:
        """Shallow copy: records are expected to be immutable."""
        cloned = LinkedKeyList()
        cloned.head = self.head
        cloned.size = self.size
        cloned.nodes = dict(self.nodes)
        cloned.records = dict(self.records)
        return cloned

    def verify(self) -> Dict[str, Any]:
        """
        Check the structural invariants.

        Returns:
            Dict with keys:
            - 'valid': bool - all checks pass
            - 'size': the stored size counter
            - 'reachable': nodes reachable from head
            - 'duplicates': keys seen more than once on the walk
        """
        seen = set()
        duplicates = []
        reachable = 0
        key = self.head
        # bounded by the node table so a cycle cannot hang the check
        while key is not NULL_NODE and reachable <= len(self.nodes):
            if key in seen:
                duplicates.append(key)
                break
            seen.add(key)
            reachable += 1
            key = self.nodes.get(key, NULL_NODE)
        valid = (
            not duplicates
            and reachable == self.size
            and len(self.nodes) == self.size
            and set(self.nodes) == set(self.records)
            and (self.head is NULL_NODE) == (self.size == 0)
        )
        return {
            'valid': valid,
            'size': self.size,
            'reachable': reachable,
            'duplicates': duplicates,
        }
