"""
AAMP Name Table
===============

The binary form only stores CRC-32 hashes of list/object/parameter names.
This module recovers readable names for them:

1. Exact table (hash -> name). Seeded from STOCK_NAMES, grown with every
   string value the codecs see (a string value whose hash shows up as a key
   is a certain match).

2. Guessing. Lots of keys are a parent name plus an index
   ("Children" -> "Child_03", "LinkTargets" -> "LinkTargets2"), so when the
   parent name is known we try the usual numbering patterns:

       {name}{i}  {name}_{i}  {name}{i:02}  {name}_{i:02}  {name}{i:03}  {name}_{i:03}

   for i in (index, index + 1) since both 0- and 1-based numbering show up.
   The same scan is retried with "Child" for "Children" and with plural
   suffixes ("s", "es", "List") stripped from the parent name.

3. Numbered templates. Last resort, NUMBERED_NAMES templates are filled in
   for every i in range(index + 2).

A NameTable is shared state: decode calls add names while encode calls look
them up. All access goes through one lock, so a table can be handed to
several threads at once.
"""

import functools
import threading
from collections import OrderedDict
from typing import Dict, Iterable, List, Optional, Tuple

from aamp_types import hash_name


# =============================================================================
# Stock dictionaries
# =============================================================================

STOCK_NAMES = (
    # Document structure
    "param_root",
    "Children", "Child",
    "Elements", "Element",
    "Params", "Param",
    "Properties", "Property",
    "Objects", "Lists",

    # Identification
    "Name", "ClassName", "GroupName", "TypeName", "Tag", "Tags",
    "Type", "Version", "Category", "Comment", "Label", "Id", "Index",

    # AI programs
    "AI", "AIs", "Action", "Actions", "Behavior", "Behaviors",
    "Query", "Queries", "DemoAIActionIdx", "SInst", "ChildIdx",

    # Links
    "LinkTargets", "LinkTarget", "Links", "Link", "Targets", "Target",

    # Stats
    "General", "Life", "Attack", "Defense", "Power", "Speed", "Weight",
    "IsActive", "Enable", "Enabled", "Flag", "Flags", "Value", "Values",
    "Count", "Rate", "Ratio", "Time", "Duration", "Interval", "Priority",

    # Transform / physics
    "Position", "Rotation", "Translate", "Scale", "Radius", "Height",
    "Width", "Length", "Center", "Offset", "Direction", "Color",
    "RigidBodySet", "RigidBody", "Shape", "ShapeNum", "Bone", "Bones",
    "Contact", "Collision", "Mass", "Friction", "Restitution", "Gravity",

    # Resources
    "Model", "Models", "Unit", "Units", "Part", "Parts", "Material",
    "Materials", "Texture", "Effect", "Effects", "Sound", "Sounds",
    "Anim", "Animation", "Bind", "Node", "Nodes", "Point", "Points",
)

# Placeholders: {} {:02} {:03} {:04}, filled with the sibling index
NUMBERED_NAMES = (
    # Generic containers
    "Item{}", "Item_{}", "Item{:02}", "Item_{:02}", "Item{:03}",
    "Element{}", "Element_{}", "Entry{}", "Entry_{}",
    "Param{}", "Param_{}", "Property{}", "Object{}", "Obj{}", "List{}",
    "Set{}", "Group{}", "Layer{}", "Slot{}", "Key{}",

    # AI programs
    "AI_{}", "Action_{}", "Behavior_{}", "Query_{}", "Child{}", "Child_{}",

    # Physics
    "RigidBody_{}", "RigidBodySet_{}", "Shape_{}", "ShapeParam_{}",
    "Bone_{}", "Contact_{}", "Collision_{}",

    # Links and resources
    "Link{}", "LinkTarget{}", "Target{}", "Node{}", "Point{}",
    "Model{}", "Unit{}", "Part{}", "Parts_{}", "Material{}", "Texture{}",
    "Effect{}", "Sound{}", "Bind{}",

    # Tables
    "Sheet{:02}", "Table{:02}", "Row{:03}", "Col{:02}",
    "Anim{:03}", "Frame{:04}",
)

PLURAL_SUFFIXES = ("s", "es", "List")

# Most recent guesses kept per table
GUESS_CACHE_SIZE = 4096


@functools.lru_cache(maxsize=None)
def _stock_table() -> Tuple[Tuple[int, str], ...]:
    """Hash the stock names once; callers copy the result"""
    return tuple((hash_name(name), name) for name in STOCK_NAMES)


def numbered_candidates(base: str, index: int) -> List[str]:
    """The six numbering patterns tried for a known parent name"""
    return [
        f"{base}{index}",
        f"{base}_{index}",
        f"{base}{index:02}",
        f"{base}_{index:02}",
        f"{base}{index:03}",
        f"{base}_{index:03}",
    ]


def fill_template(template: str, index: int) -> str:
    return (template
            .replace("{}", f"{index}")
            .replace("{:02}", f"{index:02}")
            .replace("{:03}", f"{index:03}")
            .replace("{:04}", f"{index:04}"))


# =============================================================================
# Name table
# =============================================================================

class NameTable:
    """Thread-safe hash -> name table with name guessing"""

    def __init__(self, include_stock_names: bool = True, guess_cache_size: int = GUESS_CACHE_SIZE):
        self._lock = threading.RLock()
        self._table: Dict[int, str] = dict(_stock_table()) if include_stock_names else {}
        self._guesses: 'OrderedDict[Tuple[int, int, int], Optional[str]]' = OrderedDict()
        self._guess_cache_size = guess_cache_size

    def add(self, name: str) -> int:
        """Record a name whose hash is now known. Returns the hash."""
        crc = hash_name(name)
        with self._lock:
            if self._table.get(crc) != name:
                self._table[crc] = name
                # A new name can change any earlier guess
                self._guesses.clear()
        return crc

    def load(self, names: Iterable[str]) -> int:
        """Add many names, returns how many were given"""
        count = 0
        with self._lock:
            for name in names:
                self.add(name)
                count += 1
        return count

    def load_file(self, path: str) -> int:
        """Add every non-empty line of a UTF-8 name dictionary"""
        with open(path, 'r', encoding='utf-8') as f:
            return self.load(line.rstrip('\r\n') for line in f if line.strip())

    def lookup(self, crc: int) -> Optional[str]:
        with self._lock:
            return self._table.get(crc)

    def guess(self, crc: int, parent_crc: int, index: int) -> Optional[str]:
        """
        Guess the name of the index-th child of parent_crc.

        Only meant for hashes lookup() does not know. Up to guess_cache_size
        results are memoized, least recently used first out, until the next
        add().
        """
        key = (crc, parent_crc, index)
        with self._lock:
            if key in self._guesses:
                self._guesses.move_to_end(key)
                return self._guesses[key]
            name = self._guess(crc, parent_crc, index)
            self._guesses[key] = name
            if len(self._guesses) > self._guess_cache_size:
                self._guesses.popitem(last=False)
            return name

    def _guess(self, crc: int, parent_crc: int, index: int) -> Optional[str]:
        parent = self._table.get(parent_crc)
        if parent is not None:
            bases = [parent]
            if parent == "Children":
                bases.append("Child")
            for suffix in PLURAL_SUFFIXES:
                if parent.endswith(suffix):
                    bases.append(parent[:-len(suffix)])

            for base in bases:
                for i in (index, index + 1):
                    for name in numbered_candidates(base, i):
                        if hash_name(name) == crc:
                            return name

        return self._guess_numbered(crc, index)

    @staticmethod
    def _guess_numbered(crc: int, index: int) -> Optional[str]:
        for template in NUMBERED_NAMES:
            for i in range(index + 2):
                name = fill_template(template, i)
                if hash_name(name) == crc:
                    return name
        return None

    def __contains__(self, crc: int) -> bool:
        with self._lock:
            return crc in self._table

    def __len__(self) -> int:
        with self._lock:
            return len(self._table)

    def __repr__(self):
        return f"NameTable({len(self)} names)"
