"""Block/run tree used as the editor's native addressing scheme.

A document is a list of blocks (paragraphs), each holding one or more text
runs. Flattening the tree to plain text joins blocks with ``"\\n"``, so every
boundary between sibling blocks contributes one synthetic character that
belongs to no run.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Iterator, Sequence

BLOCK_SEPARATOR = "\n"

NodePath = tuple[int, int]


@dataclass(slots=True, frozen=True)
class TextRun:
    """Leaf node carrying text plus optional inline marks."""

    text: str
    marks: frozenset[str] = frozenset()


@dataclass(slots=True)
class Block:
    """Block-level node composed of inline text runs."""

    runs: list[TextRun] = field(default_factory=list)
    kind: str = "paragraph"

    @property
    def text(self) -> str:
        return "".join(run.text for run in self.runs)


@dataclass(slots=True, frozen=True)
class RunLocation:
    """Flat-offset placement of one run inside the plain-text view."""

    path: NodePath
    start: int
    end: int
    run: TextRun


@dataclass(slots=True)
class DocumentTree:
    blocks: list[Block] = field(default_factory=list)

    @classmethod
    def from_text(cls, text: str) -> DocumentTree:
        """Build a tree with one single-run block per line of ``text``."""

        return cls([Block([TextRun(line)]) for line in text.split(BLOCK_SEPARATOR)])

    @classmethod
    def from_blocks(cls, blocks: Iterable[Block | Sequence[str] | str]) -> DocumentTree:
        """Build a tree from blocks, run sequences, or plain strings."""

        built: list[Block] = []
        for entry in blocks:
            if isinstance(entry, Block):
                built.append(entry)
            elif isinstance(entry, str):
                built.append(Block([TextRun(entry)]))
            else:
                built.append(Block([TextRun(str(part)) for part in entry]))
        return cls(built)

    def plain_text(self) -> str:
        return BLOCK_SEPARATOR.join(block.text for block in self.blocks)

    def iter_runs(self) -> Iterator[RunLocation]:
        """Yield every run in document order with its flat offsets.

        Offsets accumulate run lengths and add one synthetic character
        between consecutive blocks.
        """

        offset = 0
        for block_index, block in enumerate(self.blocks):
            if block_index:
                offset += len(BLOCK_SEPARATOR)
            for run_index, run in enumerate(block.runs):
                end = offset + len(run.text)
                yield RunLocation((block_index, run_index), offset, end, run)
                offset = end

    def block_offsets(self) -> list[int]:
        """Return the flat start offset of every block."""

        offsets: list[int] = []
        offset = 0
        for block_index, block in enumerate(self.blocks):
            if block_index:
                offset += len(BLOCK_SEPARATOR)
            offsets.append(offset)
            offset += len(block.text)
        return offsets


__all__ = [
    "BLOCK_SEPARATOR",
    "Block",
    "DocumentTree",
    "NodePath",
    "RunLocation",
    "TextRun",
]
