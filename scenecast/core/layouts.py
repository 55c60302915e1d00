"""
Scene layout table.

A layout is a named, fixed pairing of left and right character slot counts.
The table is read-only; resolution of a requested layout goes through an
ordered chain of lookups (named id, then slot arity, then the default).
"""

from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from ..const import DEFAULT_LAYOUT_ID, SCENE_LAYOUTS


@dataclass(frozen=True)
class Layout:
    """A fixed (left, right) slot pairing."""

    id: str
    label: str
    left: int
    right: int

    def to_dict(self) -> Dict[str, object]:
        return {"id": self.id, "label": self.label, "left": self.left, "right": self.right}


class LayoutTable:
    """Immutable enumeration of the available layouts."""

    def __init__(self, layouts: Iterable[Layout], default_id: str = DEFAULT_LAYOUT_ID):
        self._layouts: Sequence[Layout] = tuple(layouts)
        if not self._layouts:
            raise ValueError("Layout table requires at least one layout")

        self._by_id: Dict[str, Layout] = {layout.id: layout for layout in self._layouts}
        self.default_id = default_id
        self.max_left = max(layout.left for layout in self._layouts)
        self.max_right = max(layout.right for layout in self._layouts)

    @classmethod
    def builtin(cls) -> "LayoutTable":
        """The standard table used by the server."""
        return cls(Layout(*row) for row in SCENE_LAYOUTS)

    @property
    def layouts(self) -> Sequence[Layout]:
        return self._layouts

    def __len__(self) -> int:
        return len(self._layouts)

    def __iter__(self):
        return iter(self._layouts)

    def get(self, layout_id: object) -> Optional[Layout]:
        """Look up a layout by id; non-string ids never match."""
        if not isinstance(layout_id, str):
            return None
        return self._by_id.get(layout_id)

    def by_arity(self, left: int, right: int) -> Optional[Layout]:
        """First layout whose slot counts match, after clamping to the table's maximum arity."""
        left = min(max(left, 0), self.max_left)
        right = min(max(right, 0), self.max_right)
        for layout in self._layouts:
            if layout.left == left and layout.right == right:
                return layout
        return None

    def default(self) -> Layout:
        """The designated default layout, else the first entry."""
        return self._by_id.get(self.default_id) or self._layouts[0]

    def resolve(self, layout_id: object, left_count: int, right_count: int) -> Layout:
        """
        Pick the layout for a scene submission.

        Lookups are tried in order and the first hit wins:
        the requested id, the layout matching the submitted slot counts,
        then the default.
        """
        lookups: List[Callable[[], Optional[Layout]]] = [
            lambda: self.get(layout_id),
            lambda: self.by_arity(left_count, right_count),
        ]
        for lookup in lookups:
            layout = lookup()
            if layout is not None:
                return layout
        return self.default()

    def to_list(self) -> List[Dict[str, object]]:
        return [layout.to_dict() for layout in self._layouts]
