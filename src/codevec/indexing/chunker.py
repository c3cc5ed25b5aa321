"""Syntax-aware chunking with tree-sitter.

Each configured language lists the AST node kinds (``chunk_on``) that become
chunks. Every matching node yields one chunk, nested matches included, so a
class and each of its methods are retrievable on their own.
"""

import logging
import threading
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Any, Dict, FrozenSet, List, Optional

from tree_sitter_language_pack import get_parser

from ..config import Config
from ..errors import ChunkingError

logger = logging.getLogger(__name__)

COMMENT_KINDS = frozenset({"comment", "line_comment", "block_comment"})


@dataclass
class SourceChunk:
    """A contiguous piece of source with its symbol metadata.

    Lines are 1-based and inclusive.
    """

    content: str
    symbol_name: Optional[str]
    symbol_kind: Optional[str]
    start_line: int
    end_line: int
    package_name: Optional[str] = None


class TreeSitterChunker:
    """Chunks source files along the node kinds configured per language."""

    def __init__(self, config: Config):
        self._grammars: Dict[str, str] = {}
        self._chunk_on: Dict[str, FrozenSet[str]] = {}
        for name, language in config.languages.items():
            self._grammars[name] = language.grammar or name
            self._chunk_on[name] = frozenset(language.chunk_on or [])

        self._parsers: Dict[str, Any] = {}
        # tree-sitter parsers are not safe to share between threads mid-parse
        self._parse_lock = threading.Lock()

    @property
    def languages(self) -> List[str]:
        return sorted(self._grammars)

    def _get_parser(self, language: str) -> Any:
        """Lazy-load and cache the tree-sitter parser for ``language``."""
        parser = self._parsers.get(language)
        if parser is None:
            grammar = self._grammars[language]
            try:
                parser = get_parser(grammar)
            except Exception as e:
                raise ChunkingError(
                    f"no tree-sitter grammar '{grammar}' for language '{language}': {e}"
                ) from e
            self._parsers[language] = parser
        return parser

    def chunk(self, file_path: str, contents: str, language: str) -> List[SourceChunk]:
        """Split ``contents`` into chunks.

        Args:
            file_path: Posix path relative to the indexed root, used for the package name
            contents: Source text
            language: Configured language name

        Returns:
            Chunks in document order (outer node before its nested nodes)

        Raises:
            ChunkingError: If the language is not configured or parsing fails
        """
        if language not in self._grammars:
            raise ChunkingError(f"no grammar loaded for language '{language}'")

        source = contents.encode("utf-8")
        with self._parse_lock:
            parser = self._get_parser(language)
            tree = parser.parse(source)
        if tree is None or tree.root_node is None:
            raise ChunkingError(f"parsing {file_path} returned no tree")

        root = tree.root_node
        package_name = self._package_name(root, source, file_path, language)
        chunk_on = self._chunk_on[language]

        chunks: List[SourceChunk] = []
        stack = [root]
        while stack:
            node = stack.pop()
            if node.type in chunk_on:
                chunks.append(
                    SourceChunk(
                        content=self._with_leading_comments(node, source),
                        symbol_name=self._symbol_name(node, source, language),
                        symbol_kind=node.type,
                        start_line=node.start_point[0] + 1,
                        end_line=node.end_point[0] + 1,
                        package_name=package_name,
                    )
                )
            # Reversed so children pop in source order
            stack.extend(reversed(node.children))

        logger.debug(f"{file_path}: {len(chunks)} chunks ({language})")
        return chunks

    @staticmethod
    def _text(node: Any, source: bytes) -> str:
        return source[node.start_byte : node.end_byte].decode("utf-8", errors="replace")

    def _with_leading_comments(self, node: Any, source: bytes) -> str:
        """Node text preceded by the comment siblings directly above it."""
        comments = []
        sibling = node.prev_sibling
        while sibling is not None and sibling.type in COMMENT_KINDS:
            comments.append(self._text(sibling, source))
            sibling = sibling.prev_sibling

        content = self._text(node, source)
        if not comments:
            return content
        comments.reverse()
        return "\n".join(comments) + "\n" + content

    def _symbol_name(self, node: Any, source: bytes, language: str) -> Optional[str]:
        if language == "rust" and node.type == "impl_item":
            type_node = node.child_by_field_name("type")
            if type_node is None:
                return None
            trait_node = node.child_by_field_name("trait")
            if trait_node is not None:
                return f"{self._text(trait_node, source)} for {self._text(type_node, source)}"
            return self._text(type_node, source)

        if language == "python" and node.type == "decorated_definition":
            definition = node.child_by_field_name("definition")
            if definition is not None:
                node = definition

        if language == "go" and node.type == "type_declaration":
            for child in node.children:
                if child.type in ("type_spec", "type_alias"):
                    node = child
                    break

        name_node = node.child_by_field_name("name")
        if name_node is None:
            return None
        return self._text(name_node, source)

    def _package_name(
        self, root: Any, source: bytes, file_path: str, language: str
    ) -> Optional[str]:
        if language == "go":
            for child in root.children:
                if child.type == "package_clause":
                    for part in child.children:
                        if part.type == "package_identifier":
                            return self._text(part, source)
            return None

        path = PurePosixPath(file_path)
        parts = list(path.parent.parts)
        if parts and parts[0] == "src":
            parts = parts[1:]

        if language == "python":
            if path.stem != "__init__":
                parts.append(path.stem)
            return ".".join(parts) or None

        if language == "rust":
            if path.stem not in ("mod", "lib", "main"):
                parts.append(path.stem)
            return "::".join(["crate"] + parts)

        return None
