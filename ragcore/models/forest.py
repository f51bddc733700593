"""Arena of chunks indexed by ID, plus pure forest validation.

:class:`ChunkForest` is what the chunker returns: an ordered list of chunks
with lookups by ID, scale and parent.  :func:`validate_forest` checks the
relational invariants (every reference resolves, parent/child links agree,
siblings are symmetric, no cycles, one source) using only the ID fields, so
both the chunker's tests and the quality validator can run it on any set of
chunks pulled from a store.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator

from pydantic import BaseModel, ConfigDict

from ragcore.models.chunk import Chunk, ScaleType


class ForestIssue(BaseModel):
    """One relational inconsistency found by :func:`validate_forest`."""

    model_config = ConfigDict(frozen=True)

    chunk_id: str
    problem: str


class ChunkForest:
    """Ordered arena of chunks for one source document."""

    def __init__(self, chunks: Iterable[Chunk] = ()) -> None:
        self._chunks: list[Chunk] = sorted(chunks, key=lambda c: c.sequence_order)
        self._by_id: dict[str, Chunk] = {c.chunk_id: c for c in self._chunks}

    def __len__(self) -> int:
        return len(self._chunks)

    def __iter__(self) -> Iterator[Chunk]:
        return iter(self._chunks)

    def __contains__(self, chunk_id: object) -> bool:
        return chunk_id in self._by_id

    @property
    def chunks(self) -> list[Chunk]:
        return list(self._chunks)

    def get(self, chunk_id: str) -> Chunk | None:
        return self._by_id.get(chunk_id)

    def roots(self) -> list[Chunk]:
        return [c for c in self._chunks if c.parent_chunk_id is None]

    def children(self, chunk_id: str) -> list[Chunk]:
        chunk = self._by_id.get(chunk_id)
        if chunk is None:
            return []
        return [self._by_id[cid] for cid in chunk.child_chunk_ids if cid in self._by_id]

    def by_scale(self, scale: ScaleType) -> list[Chunk]:
        return [c for c in self._chunks if c.scale_type == scale]

    def leaves(self) -> list[Chunk]:
        return [c for c in self._chunks if not c.child_chunk_ids]

    def replace(self, chunks: Iterable[Chunk]) -> ChunkForest:
        """Return a new forest where chunks with matching IDs are swapped in."""
        updated = {c.chunk_id: c for c in chunks}
        return ChunkForest(updated.get(c.chunk_id, c) for c in self._chunks)

    def validate(self) -> list[ForestIssue]:
        return validate_forest(self._chunks)


def validate_forest(chunks: Iterable[Chunk]) -> list[ForestIssue]:
    """Check the relational invariants of a chunk set.

    Parameters
    ----------
    chunks:
        Chunks of one or more sources.  References are resolved within the
        given set only.

    Returns
    -------
    list[ForestIssue]
        Empty when every parent/child/sibling reference resolves, is
        bidirectionally consistent, stays within one source and the parent
        links contain no cycle.
    """
    by_id = {c.chunk_id: c for c in chunks}
    issues: list[ForestIssue] = []

    for chunk in by_id.values():
        cid = chunk.chunk_id
        if chunk.parent_chunk_id is not None:
            parent = by_id.get(chunk.parent_chunk_id)
            if parent is None:
                issues.append(ForestIssue(chunk_id=cid, problem="parent not found"))
            else:
                if cid not in parent.child_chunk_ids:
                    issues.append(ForestIssue(chunk_id=cid, problem="parent does not list chunk as child"))
                if parent.source_id != chunk.source_id:
                    issues.append(ForestIssue(chunk_id=cid, problem="parent belongs to another source"))
                if parent.hierarchy_level + 1 != chunk.hierarchy_level:
                    issues.append(ForestIssue(chunk_id=cid, problem="hierarchy level does not follow parent"))
        elif chunk.hierarchy_level != 0:
            issues.append(ForestIssue(chunk_id=cid, problem="root with non-zero hierarchy level"))

        if len(set(chunk.child_chunk_ids)) != len(chunk.child_chunk_ids):
            issues.append(ForestIssue(chunk_id=cid, problem="duplicate child id"))
        for child_id in chunk.child_chunk_ids:
            child = by_id.get(child_id)
            if child is None:
                issues.append(ForestIssue(chunk_id=cid, problem=f"child {child_id} not found"))
            elif child.parent_chunk_id != cid:
                issues.append(ForestIssue(chunk_id=cid, problem=f"child {child_id} points to another parent"))

        for sibling_id in chunk.sibling_chunk_ids:
            if sibling_id == cid:
                issues.append(ForestIssue(chunk_id=cid, problem="chunk lists itself as sibling"))
                continue
            sibling = by_id.get(sibling_id)
            if sibling is None:
                issues.append(ForestIssue(chunk_id=cid, problem=f"sibling {sibling_id} not found"))
            elif cid not in sibling.sibling_chunk_ids:
                issues.append(ForestIssue(chunk_id=cid, problem=f"sibling {sibling_id} is not symmetric"))

    # Cycle detection over parent links.
    state: dict[str, int] = {}  # 1 = on current path, 2 = done
    for start in by_id:
        path: list[str] = []
        node: str | None = start
        while node is not None and node in by_id and state.get(node) != 2:
            if state.get(node) == 1:
                issues.append(ForestIssue(chunk_id=node, problem="cycle in parent links"))
                break
            state[node] = 1
            path.append(node)
            node = by_id[node].parent_chunk_id
        for visited in path:
            state[visited] = 2

    return issues
