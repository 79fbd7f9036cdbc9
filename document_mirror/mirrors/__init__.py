"""
Mirrors: observable local copies of remote state.

- DocumentMirror: one remote record
- CollectionMirror: an ordered set of remote records, with the diff engine
- IdentityMirror: the signed-in user
"""

from .base import MirrorBase, WriteErrorHook
from .collection import CollectionMirror
from .document import DocumentMirror
from .identity import IdentityMirror

__all__ = [
    "MirrorBase",
    "WriteErrorHook",
    "DocumentMirror",
    "CollectionMirror",
    "IdentityMirror",
]
