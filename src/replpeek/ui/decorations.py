"""
Decorations
===========
The host-neutral replacement for editor overlays: a region of a surface
(a buffer, keyed by its path) carrying a style class and display text.

The store allows any number of regions per surface. The engine clears it
before every evaluation, so in practice one evaluation cycle leaves at most
one diagnostic decoration behind.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional


@dataclass(frozen=True)
class Decoration:
    surface: str
    start: int
    end: int
    style: str  # "warning" | "compile-error" | "error"
    text: str
    line: int = 0


class DecorationStore:
    def __init__(self) -> None:
        self._by_surface: Dict[str, List[Decoration]] = {}

    def create(
        self,
        surface: str,
        start: int,
        end: int,
        style: str,
        text: str,
        line: int = 0,
    ) -> Decoration:
        if end < start:
            start, end = end, start
        decoration = Decoration(surface, start, end, style, text, line)
        self._by_surface.setdefault(surface, []).append(decoration)
        return decoration

    def clear_all(self, surface: Optional[str] = None) -> int:
        """Remove every decoration on surface, or on all surfaces. Returns how many went."""
        if surface is None:
            removed = len(self)
            self._by_surface.clear()
            return removed
        return len(self._by_surface.pop(surface, []))

    def for_surface(self, surface: str) -> List[Decoration]:
        return list(self._by_surface.get(surface, []))

    def for_line(self, surface: str, line: int) -> List[Decoration]:
        return [d for d in self._by_surface.get(surface, []) if d.line == line]

    def overlapping(self, surface: str, start: int, end: int) -> List[Decoration]:
        """Decorations touching [start, end]; used to paint lines a span crosses."""
        return [
            d for d in self._by_surface.get(surface, [])
            if d.start <= end and d.end >= start
        ]

    def __len__(self) -> int:
        return sum(len(v) for v in self._by_surface.values())
