# zan_huffman.py
"""
Static Huffman codec for RCON datagrams.

The tree is built once from a fixed frequency table, so both ends derive
the same codes without shipping a codebook. Wire framing:

    [pad][packed code bits ...]

pad is the number of zero bits filling out the last byte (0-7). A pad byte
of 0xFF means the payload follows uncompressed; the encoder falls back to it
whenever compression would not make the datagram shorter.
"""
from __future__ import annotations

from heapq import heapify, heappop, heappush
from typing import Dict, Optional, Sequence

from zan_errors import HuffmanError
from zan_proto import TEXT_FREQUENCIES, HUFFMAN_RAW_MARKER, validate_frequency_table


class _Node:
    __slots__ = ("weight", "symbol", "left", "right")

    def __init__(self, weight: float, symbol: Optional[int] = None,
                 left: "_Node | None" = None, right: "_Node | None" = None):
        self.weight, self.symbol, self.left, self.right = weight, symbol, left, right

    @property
    def is_leaf(self) -> bool:
        return self.symbol is not None


def build_tree(table: Sequence[float]) -> _Node:
    """Greedy Huffman construction over the nonzero entries of ``table``.

    Ties on weight are broken by symbol value for leaves and by creation
    order for merged nodes (numbered from 256 up), so the result depends on
    nothing but the table.
    """
    heap = [(w, sym, _Node(w, sym)) for sym, w in enumerate(table) if w > 0]
    if not heap:
        raise ValueError("Frequency table has no symbol with a nonzero weight")
    heapify(heap)

    if len(heap) == 1:
        # A lone symbol still needs one bit.
        w, _, leaf = heap[0]
        return _Node(w, left=leaf)

    order = 256
    while len(heap) > 1:
        w1, _, a = heappop(heap)
        w2, _, b = heappop(heap)
        heappush(heap, (w1 + w2, order, _Node(w1 + w2, left=a, right=b)))
        order += 1
    return heap[0][2]


def build_code_table(root: _Node) -> Dict[int, str]:
    codes: Dict[int, str] = {}
    stack = [(root, "")]
    while stack:
        node, prefix = stack.pop()
        if node.is_leaf:
            codes[node.symbol] = prefix
            continue
        if node.right is not None:
            stack.append((node.right, prefix + "1"))
        if node.left is not None:
            stack.append((node.left, prefix + "0"))
    return codes


class HuffmanCodec:
    """Encodes and decodes datagram payloads against one fixed tree.

    Bits are packed least-significant first within each byte unless
    ``msb_first`` is set.
    """

    def __init__(self, table: Sequence[float] = TEXT_FREQUENCIES, *, msb_first: bool = False):
        self.table = validate_frequency_table(table)
        self.msb_first = msb_first
        self.root = build_tree(self.table)
        self.codes = build_code_table(self.root)

    def encode(self, data: bytes) -> bytes:
        data = bytes(data)
        try:
            bits = "".join(self.codes[b] for b in data)
        except KeyError:
            # byte with zero weight in the table
            return self._raw(data)

        nbytes = (len(bits) + 7) // 8
        if nbytes >= len(data):
            return self._raw(data)

        out = bytearray([nbytes * 8 - len(bits)])
        for i in range(0, len(bits), 8):
            chunk = bits[i:i + 8].ljust(8, "0")
            out.append(int(chunk if self.msb_first else chunk[::-1], 2))
        return bytes(out)

    def decode(self, data: bytes) -> bytes:
        if not data:
            return b""

        pad = data[0]
        if pad == HUFFMAN_RAW_MARKER:
            return bytes(data[1:])
        if pad > 7:
            raise HuffmanError(f"Invalid padding header {pad}")

        body = data[1:]
        total = len(body) * 8 - pad
        if total < 0:
            raise HuffmanError("Padding header exceeds payload")

        out = bytearray()
        root = node = self.root
        for i in range(total):
            shift = 7 - (i & 7) if self.msb_first else i & 7
            bit = (body[i >> 3] >> shift) & 1
            node = node.right if bit else node.left
            if node is None:
                raise HuffmanError("Invalid code in compressed data")
            if node.is_leaf:
                out.append(node.symbol)
                node = root
        if node is not root:
            raise HuffmanError("Compressed data ends inside a code")
        return bytes(out)

    @staticmethod
    def _raw(data: bytes) -> bytes:
        return bytes([HUFFMAN_RAW_MARKER]) + data
