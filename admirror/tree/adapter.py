"""Tree adapter — the only way the engine touches a document.

The engine queries trees exclusively through ``TreeNode``: children,
parent, attributes, direct text and selector matching. ``SoupTree`` is the
concrete adapter over a BeautifulSoup document with soupsieve as the
selector engine. All queries are read-only.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterator

import soupsieve
from bs4 import BeautifulSoup, NavigableString, Tag
from bs4.element import PreformattedString

from admirror.telemetry.errors import SelectorError


def compile_selector(selector: str) -> soupsieve.SoupSieve:
    """Compile a CSS selector, raising ``SelectorError`` if it does not parse."""
    if not selector or not selector.strip():
        raise SelectorError(selector, "Selector is empty")
    try:
        return soupsieve.compile(selector)
    except soupsieve.SelectorSyntaxError as e:
        raise SelectorError(selector, str(e)) from e


def check_selector(selector: str) -> str | None:
    """Return an error message if the selector is invalid, else None."""
    try:
        compile_selector(selector)
    except SelectorError as e:
        return e.reason
    return None


class TreeNode(ABC):
    """A node-like element in a read-only document tree.

    Identity matters: adapters must hand out the same ``TreeNode`` object
    for the same underlying element so results can be deduplicated with
    ``is``/sets.
    """

    @property
    @abstractmethod
    def tag(self) -> str: ...

    @property
    @abstractmethod
    def parent(self) -> TreeNode | None: ...

    @property
    @abstractmethod
    def children(self) -> list[TreeNode]:
        """Element children only, in document order."""

    @property
    @abstractmethod
    def attributes(self) -> dict[str, str]: ...

    @property
    @abstractmethod
    def direct_text(self) -> str:
        """Text of this node's own text children, stripped."""

    @property
    @abstractmethod
    def text(self) -> str:
        """Full text content including descendants."""

    @abstractmethod
    def matches(self, selector: str) -> bool: ...

    @abstractmethod
    def select(self, selector: str) -> list[TreeNode]:
        """Descendants matching the selector, in document order."""

    @property
    def is_document(self) -> bool:
        return False

    def get_attribute(self, name: str) -> str | None:
        return self.attributes.get(name)

    def has_attribute(self, name: str) -> bool:
        return name in self.attributes

    def select_one(self, selector: str) -> TreeNode | None:
        found = self.select(selector)
        return found[0] if found else None

    def closest(self, selector: str) -> TreeNode | None:
        """This node or its nearest ancestor matching the selector."""
        node: TreeNode | None = self
        while node is not None:
            if node.matches(selector):
                return node
            node = node.parent
        return None

    def ancestors(self) -> Iterator[TreeNode]:
        node = self.parent
        while node is not None:
            yield node
            node = node.parent

    def descendants(self) -> Iterator[TreeNode]:
        for child in self.children:
            yield child
            yield from child.descendants()

    def path_from_root(self) -> list[TreeNode]:
        path = [self, *self.ancestors()]
        path.reverse()
        return path

    def root(self) -> TreeNode:
        return self.path_from_root()[0]


class SoupNode(TreeNode):
    """``TreeNode`` over a BeautifulSoup ``Tag``. Created only by ``SoupTree``."""

    def __init__(self, element: Tag, tree: SoupTree) -> None:
        self._element = element
        self._tree = tree

    def __repr__(self) -> str:
        attrs = " ".join(f'{k}="{v}"' for k, v in list(self.attributes.items())[:3])
        return f"<SoupNode {self.tag}{' ' + attrs if attrs else ''}>"

    @property
    def tag(self) -> str:
        return (self._element.name or "").lower()

    @property
    def is_document(self) -> bool:
        return isinstance(self._element, BeautifulSoup)

    @property
    def parent(self) -> TreeNode | None:
        parent = self._element.parent
        if parent is None:
            return None
        return self._tree.wrap(parent)

    @property
    def children(self) -> list[TreeNode]:
        return [self._tree.wrap(child) for child in self._element.children if isinstance(child, Tag)]

    @property
    def attributes(self) -> dict[str, str]:
        # Multi-valued attributes (class, rel, ...) come back as lists.
        return {
            key: " ".join(value) if isinstance(value, list) else str(value)
            for key, value in self._element.attrs.items()
        }

    @property
    def direct_text(self) -> str:
        parts = [
            str(child)
            for child in self._element.children
            if isinstance(child, NavigableString) and not isinstance(child, PreformattedString)
        ]
        return "".join(parts).strip()

    @property
    def text(self) -> str:
        return self._element.get_text()

    def matches(self, selector: str) -> bool:
        compiled = compile_selector(selector)
        if self.is_document:
            return False
        return bool(compiled.match(self._element))

    def select(self, selector: str) -> list[TreeNode]:
        compiled = compile_selector(selector)
        return [self._tree.wrap(el) for el in compiled.select(self._element)]

    def select_one(self, selector: str) -> TreeNode | None:
        found = compile_selector(selector).select_one(self._element)
        return self._tree.wrap(found) if found is not None else None


class SoupTree:
    """A parsed HTML document exposed through ``TreeNode`` wrappers."""

    def __init__(self, soup: BeautifulSoup) -> None:
        self._soup = soup
        self._nodes: dict[int, SoupNode] = {}

    @classmethod
    def from_html(cls, html: str, parser: str = "html.parser") -> SoupTree:
        return cls(BeautifulSoup(html, parser))

    @property
    def root(self) -> TreeNode:
        return self.wrap(self._soup)

    def wrap(self, element: Tag) -> SoupNode:
        # Tags stay alive as long as the soup does, so id() is stable.
        key = id(element)
        node = self._nodes.get(key)
        if node is None:
            node = SoupNode(element, self)
            self._nodes[key] = node
        return node


def parse_html(html: str) -> TreeNode:
    """Parse an HTML string and return its document root node."""
    return SoupTree.from_html(html).root
