# keepform/processors/addressing.py
"""
Structural addressing of nested containers.

Content controls (w:sdt) and text-box stories (w:txbxContent) can nest
inside each other to any depth. A depth-first walk numbers each container
with a counter kept per kind and per nesting depth of that kind; the path
of counters from the outermost container down is the container's address.

The walk uses an explicit stack rather than recursion, and only reads the
tree, so the same addresses come out of every pass over an unmodified
document.
"""

from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Iterator

from keepform.models.types import ContainerKind

from .ooxml import TAG_R, TAG_SDT, TAG_TXBX_CONTENT, element_children

CONTAINER_TAGS = {
    TAG_SDT: ContainerKind.CONTENT_CONTROL,
    TAG_TXBX_CONTENT: ContainerKind.FLOATING_TEXT,
}


@dataclass(frozen=True)
class Visit:
    """One element reached by the walk, with the container paths around it"""
    element: Any
    container_path: tuple[int, ...]
    floating_path: tuple[int, ...]

    @property
    def inside_floating(self) -> bool:
        return bool(self.floating_path)


class StructureWalker:
    """
    Document-order walk that assigns per-kind, per-depth container counters.

    For a container element the yielded paths already include the
    container's own counter. Counters start at 1 and are never reset, so
    the composed path identifies a container unambiguously.
    """

    def __init__(self, root, container_tags: dict = CONTAINER_TAGS):
        self.root = root
        self.container_tags = container_tags

    def __iter__(self) -> Iterator[Visit]:
        counters = {kind: defaultdict(int) for kind in ContainerKind}
        stacks: dict[ContainerKind, list[int]] = {kind: [] for kind in ContainerKind}
        leave = object()

        pending = [(child, None) for child in reversed(element_children(self.root))]
        while pending:
            node, marker = pending.pop()
            if marker is leave:
                stacks[self.container_tags[node.tag]].pop()
                continue

            kind = self.container_tags.get(node.tag)
            if kind is not None:
                stack = stacks[kind]
                depth = len(stack)
                counters[kind][depth] += 1
                stack.append(counters[kind][depth])
                pending.append((node, leave))

            yield Visit(
                element=node,
                container_path=tuple(stacks[ContainerKind.CONTENT_CONTROL]),
                floating_path=tuple(stacks[ContainerKind.FLOATING_TEXT]),
            )
            pending.extend((child, None) for child in reversed(element_children(node)))


def iter_descendants(root, tags, prune=frozenset()) -> Iterator[Any]:
    """
    Descendants of ``root`` whose tag is in ``tags``, in document order.

    The walk does not descend into elements whose tag is in ``prune``
    (the root itself is always entered).
    """
    pending = list(reversed(element_children(root)))
    while pending:
        node = pending.pop()
        if node.tag in tags:
            yield node
        if node.tag not in prune:
            pending.extend(reversed(element_children(node)))


def floating_runs(box) -> list:
    """
    Every run of a text-box story in document order.

    Runs of nested text boxes belong to those boxes and are left out.
    """
    return list(iter_descendants(box, {TAG_R}, prune={TAG_R, TAG_TXBX_CONTENT}))
