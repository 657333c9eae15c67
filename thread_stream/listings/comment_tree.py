"""Reply tree reconstruction and lazy expansion.

A thread arrives as a flat batch of replies and "more" stubs. Replies may
embed their own children inline; stubs name children that must be fetched
with a separate request. `ReplyTree` materializes the batch into a forest
under a known root and drains it breadth-first, fetching stubs only once
every already materialized reply has been yielded.

Expansion batches do not respect tree order: a reply can arrive before its
parent, even across batches. Such replies wait in an orphan registry keyed by
the missing parent id and are adopted, with everything waiting under them,
as soon as that parent is attached. A parent that never arrives leaves its
waiting subtree unreachable; the API gives no signal that would tell a lost
parent apart from a slow one, so those replies are dropped without error.
"""

from collections import deque
from typing import TYPE_CHECKING, Optional

from ..models import FlatBatch, Node, PendingExpansion
from ..utils.logger import get_logger

if TYPE_CHECKING:
    from ..forums.base import BaseForum

logger = get_logger("comment_tree")


def partition(batch: FlatBatch) -> tuple[list[Node], list[PendingExpansion]]:
    """Split a batch into replies and stubs, keeping their relative order."""
    nodes: list[Node] = []
    stubs: list[PendingExpansion] = []
    for item in batch:
        if isinstance(item, PendingExpansion):
            stubs.append(item)
        else:
            nodes.append(item)
    return nodes, stubs


class ReplyTree:
    """Async iterator over every reply of a thread, breadth-first.

    Args:
        forum: Transport used to expand stubs.
        thread_id: Fullname of the thread the replies belong to.
        root_parent_id: Replies with this parent are top level. Usually the
            thread itself, or a reply when iterating a sub-thread.
        batch: The initial flat batch of replies and stubs.
    """

    def __init__(
        self,
        forum: "BaseForum",
        thread_id: str,
        root_parent_id: str,
        batch: Optional[FlatBatch] = None,
    ):
        self.forum = forum
        self.thread_id = thread_id
        self.root_parent_id = root_parent_id

        self._arena: dict[str, Node] = {}  # every attached node, any depth
        self._seen: set[str] = set()
        self._drained: set[str] = set()
        self._queue: deque[Node] = deque()
        self._expansions: deque[PendingExpansion] = deque()
        self._orphans: dict[str, list[Node]] = {}
        self._inline_stubs: list[PendingExpansion] = []
        self.dropped_orphans = 0

        self.build(batch or [])

    # ── Materialization ───────────────────────────────────────────

    def build(self, batch: FlatBatch):
        """Materialize the initial batch under the root."""
        self.merge(batch)
        logger.debug(
            "tree_built",
            thread_id=self.thread_id,
            root=self.root_parent_id,
            queued=len(self._queue),
            expansions=len(self._expansions),
        )

    def merge(self, batch: FlatBatch):
        """Attach every reply of `batch` and queue its stubs.

        Safe to call with replies that were already attached; repeats are
        ignored.
        """
        nodes, stubs = partition(batch)
        for node in nodes:
            self._merge_node(node)
        self._expansions.extend(stubs)
        self._expansions.extend(self._inline_stubs)
        self._inline_stubs = []

    def _merge_node(self, node: Node):
        if node.id in self._seen:
            logger.debug("duplicate_reply_ignored", id=node.id)
            return
        self._seen.add(node.id)
        self._take_inline_children(node)

        if node.parent_id == self.root_parent_id:
            self._attach(node, None)
        elif node.parent_id in self._arena:
            self._attach(node, self._arena[node.parent_id])
        else:
            node.children.extend(self._orphans.pop(node.id, []))
            self._orphans.setdefault(node.parent_id, []).append(node)
            logger.debug("orphan_parked", id=node.id, parent_id=node.parent_id)

    def _take_inline_children(self, node: Node):
        """Move the server-embedded children of `node` into its child list."""
        inline, node.inline_children = node.inline_children, []
        for item in inline:
            if isinstance(item, PendingExpansion):
                self._inline_stubs.append(item)
            elif item.parent_id != node.id:
                self._merge_node(item)
            elif item.id not in self._seen:
                self._seen.add(item.id)
                self._take_inline_children(item)
                node.children.append(item)

    def _attach(self, node: Node, parent: Optional[Node]):
        if parent is None:
            node.depth = 0
            self._queue.append(node)
        else:
            node.depth = parent.depth + 1
            parent.children.append(node)
            # A drained parent will never queue its children again.
            if parent.id in self._drained:
                self._queue.append(node)
        self._index(node)

    def _index(self, node: Node):
        """Register `node` and its subtree, adopting orphans that wait on any of them."""
        self._arena[node.id] = node
        adopted = self._orphans.pop(node.id, [])
        if adopted:
            logger.debug("orphans_adopted", parent_id=node.id, count=len(adopted))
            node.children.extend(adopted)
        for child in node.children:
            child.depth = node.depth + 1
            self._index(child)

    # ── Inspection ────────────────────────────────────────────────

    @property
    def orphan_count(self) -> int:
        """Number of replies still waiting for a parent."""
        return sum(len(waiting) for waiting in self._orphans.values())

    @property
    def pending_expansions(self) -> int:
        return len(self._expansions)

    def get(self, reply_id: str) -> Optional[Node]:
        """Look up an attached reply by id."""
        return self._arena.get(reply_id)

    # ── Iteration ─────────────────────────────────────────────────

    def __aiter__(self):
        return self

    async def __anext__(self) -> Node:
        while True:
            if self._queue:
                node = self._queue.popleft()
                self._drained.add(node.id)
                self._queue.extend(node.children)
                return node

            if self._expansions:
                await self._expand(self._expansions[0])
                # Dropped only after its batch is merged.
                self._expansions.popleft()
                continue

            if self._orphans:
                logger.debug(
                    "orphans_dropped",
                    thread_id=self.thread_id,
                    parents=sorted(self._orphans),
                    count=self.orphan_count,
                )
                self.dropped_orphans += self.orphan_count
                self._orphans.clear()
            raise StopAsyncIteration

    async def _expand(self, stub: PendingExpansion):
        if not stub.child_ids:
            logger.debug("empty_expansion_skipped", parent_id=stub.parent_id)
            return
        batch = await self.forum.fetch_batch(self.thread_id, stub.parent_id, stub.child_ids)
        logger.debug(
            "expansion_fetched",
            thread_id=self.thread_id,
            parent_id=stub.parent_id,
            requested=len(stub.child_ids),
            received=len(batch),
        )
        self.merge(batch)

    async def take(self, n: int) -> list[Node]:
        """Collect at most n replies."""
        nodes: list[Node] = []
        while len(nodes) < n:
            try:
                nodes.append(await self.__anext__())
            except StopAsyncIteration:
                break
        return nodes
