"""
Field-level diff between before/after field maps.
"""
import json

ADDED = 'added'
REMOVED = 'removed'
UNCHANGED = 'unchanged'
CHANGED = 'changed'


def _serialized(value):
    return json.dumps(value, sort_keys=True, default=str)


def compute_diff(before=None, after=None):
    """
    Classify every key of the union of ``before`` and ``after``.

    A key counts as present when it exists in the map, even with a None value.
    """
    before = before or {}
    after = after or {}
    out = {}
    for key in set(before) | set(after):
        if key not in before:
            out[key] = ADDED
        elif key not in after:
            out[key] = REMOVED
        elif _serialized(before[key]) == _serialized(after[key]):
            out[key] = UNCHANGED
        else:
            out[key] = CHANGED
    return out
