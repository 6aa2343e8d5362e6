from __future__ import annotations

import re
import xml.etree.ElementTree as ET
from typing import Iterator, List, Optional, Tuple, Union

from ..events import ParseObserver, NoopObserver
from .models import ParseResult, StructuralNode

DIVISION_TAG = re.compile(r"^DIV([1-9])$")
HEADING_TAG = "HEAD"
TYPE_ATTR = "TYPE"
IDENTIFIER_ATTR = "N"
NODE_ATTR = "NODE"


class StructureParseError(ValueError):
    """Raised when a document cannot be read as nested division markup."""


class DuplicatePathError(StructureParseError):
    def __init__(self, path: str):
        super().__init__(f"duplicate structure path: {path!r}")
        self.path = path


def local_name(tag: object) -> Optional[str]:
    if not isinstance(tag, str):
        return None
    return tag.rsplit("}", 1)[-1]


def division_level(tag: object) -> Optional[int]:
    """Return the DIV level (1-9) encoded in a tag, or None for any other element."""
    name = local_name(tag)
    if name is None:
        return None
    match = DIVISION_TAG.match(name)
    return int(match.group(1)) if match else None


def normalize_fragment(text: Optional[str]) -> List[str]:
    if not text:
        return []
    collapsed = " ".join(text.split())
    return [collapsed] if collapsed else []


def count_words(text: Optional[str]) -> int:
    if not text:
        return 0
    return len(text.split())


class StructureParser:
    """
    Flattens DIV1-DIV9 division markup into structural nodes.

    Nodes come back in document pre-order. Every recursive step returns its
    own text fragments, child nodes and word totals, which the caller merges.
    Parent links are left unset; see ``ParentLinkageResolver``.
    """

    def __init__(self, separator: str = "/", observer: Optional[ParseObserver] = None):
        if not separator:
            raise ValueError("separator must not be empty")
        self.separator = separator
        self.observer = observer or NoopObserver()

    def parse(self, content: Union[str, bytes], document_id: Optional[str] = None) -> ParseResult:
        try:
            root = ET.fromstring(content)
        except ET.ParseError as exc:
            error = StructureParseError(f"error parsing XML: {exc}")
            self.observer.on_parse_failed(document_id, error)
            raise error from exc

        nodes: List[StructuralNode] = []
        total_words = 0
        try:
            for element, level in self._top_level_divisions(root):
                division_nodes, words = self._parse_division(element, level, parent_path="")
                nodes.extend(division_nodes)
                total_words += words
        except RecursionError as exc:
            error = StructureParseError("divisions nested too deeply")
            self.observer.on_parse_failed(document_id, error)
            raise error from exc

        try:
            self._check_unique_paths(nodes)
        except DuplicatePathError as exc:
            self.observer.on_parse_failed(document_id, exc)
            raise

        self.observer.on_document_parsed(document_id, len(nodes), total_words)
        return ParseResult(nodes=tuple(nodes), total_words=total_words)

    def _top_level_divisions(self, root: ET.Element) -> Iterator[Tuple[ET.Element, int]]:
        stack = [root]
        while stack:
            element = stack.pop()
            level = division_level(element.tag)
            if level is not None:
                yield element, level
                continue
            # Reversed so children pop off in document order.
            stack.extend(reversed(list(element)))

    def _parse_division(
        self,
        element: ET.Element,
        level: int,
        parent_path: str,
    ) -> Tuple[List[StructuralNode], int]:
        identifier = element.get(IDENTIFIER_ATTR, "")
        path = f"{parent_path}{self.separator}{identifier}" if parent_path else identifier

        heading: Optional[str] = None
        fragments = normalize_fragment(element.text)
        children: List[StructuralNode] = []
        child_words = 0

        for child in element:
            child_level = division_level(child.tag)
            if local_name(child.tag) == HEADING_TAG:
                heading = "".join(child.itertext()).strip() or None
            elif child_level is not None:
                nodes, words = self._parse_division(child, child_level, path)
                children.extend(nodes)
                child_words += words
            else:
                text_fragments, nodes, words = self._collect_body(child, path)
                fragments.extend(text_fragments)
                children.extend(nodes)
                child_words += words
            fragments.extend(normalize_fragment(child.tail))

        text = " ".join(fragments) or None
        word_count = count_words(text)
        node = StructuralNode(
            division_type=element.get(TYPE_ATTR, ""),
            level=level,
            identifier=identifier,
            path=path,
            node_id=element.get(NODE_ATTR),
            heading=heading,
            text=text,
            word_count=word_count,
        )
        return [node, *children], word_count + child_words

    def _collect_body(
        self,
        element: ET.Element,
        path: str,
    ) -> Tuple[List[str], List[StructuralNode], int]:
        """
        Text of a non-division element and its descendants. Divisions nested
        inside wrapper elements still become child nodes of ``path``.
        """
        fragments = normalize_fragment(element.text)
        nodes: List[StructuralNode] = []
        words = 0
        # Each open wrapper keeps its child iterator and the tail to emit once it closes.
        stack: List[Tuple[Iterator[ET.Element], Optional[str]]] = [(iter(element), None)]
        while stack:
            children, closing_tail = stack[-1]
            child = next(children, None)
            if child is None:
                stack.pop()
                fragments.extend(normalize_fragment(closing_tail))
                continue
            child_level = division_level(child.tag)
            if child_level is not None:
                child_nodes, child_words = self._parse_division(child, child_level, path)
                nodes.extend(child_nodes)
                words += child_words
                fragments.extend(normalize_fragment(child.tail))
            else:
                fragments.extend(normalize_fragment(child.text))
                stack.append((iter(child), child.tail))
        return fragments, nodes, words

    def _check_unique_paths(self, nodes: List[StructuralNode]) -> None:
        seen = set()
        for node in nodes:
            if node.path in seen:
                raise DuplicatePathError(node.path)
            seen.add(node.path)
