"""
Module: batch_kernel.selectors.base
Responsibility: Abstract base class for read-only query selectors over the
    execution collection.
Architecture position: Kernel > Selectors.  May import from db/ and domain/.
    MUST NOT import from services/ or outer layers.  Selectors NEVER
    create, modify, or delete documents.

Invariants enforced:
    - Read-only access: selectors only call the query side of
      DocumentCollection (find, find_one, count, distinct).
    - Entity return convention: selectors return decoded domain entities,
      never raw documents.
"""

from abc import ABC

from batch_kernel.db.documents import DocumentCollection
from batch_kernel.domain.record_codec import RecordCodec


class BaseSelector(ABC):
    """
    Abstract base class for all selectors.

    Contract:
        Selectors receive the collection and the codec from the caller,
        perform read-only queries, and return decoded entities.

    Non-goals:
        - BaseSelector does NOT define any query methods.
    """

    def __init__(self, collection: DocumentCollection, codec: RecordCodec | None = None):
        self.collection = collection
        self.codec = codec or RecordCodec()
