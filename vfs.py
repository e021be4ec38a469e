"""
In-memory virtual filesystem for the VFS emulator.

The filesystem is seeded from a flat-file manifest. Every manifest line
describes one entry as ``kind;absolute_path;content`` where ``kind`` is
``file`` or ``dir``. Fields are separated by semicolons; a field may be
wrapped in double quotes so that it can contain semicolons, and a doubled
double-quote inside such a region stands for one literal quote character.
Lines that are blank or start with ``#`` are ignored.

File content is stored exactly as written in the manifest. When the stored
text happens to be valid base64 it is treated as an encoded payload and
``FileContent.as_text`` returns the decoded text; otherwise the text is used
as-is.

Nothing here is ever written back to disk. The tree lives for the lifetime of
the process and is navigated through a single "current directory" cursor.
"""

import base64
import binascii
import logging
import re
import weakref
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, Iterator, List, Optional

logger = logging.getLogger(__name__)

SEPARATOR = "/"
PARENT = ".."
FIELD_DELIMITER = ";"
QUOTE = '"'
COMMENT_PREFIX = "#"

KIND_FILE = "file"
KIND_DIR = "dir"


# ---------- Errors ----------
class VFSError(Exception):
    """Base class for every error raised by the emulator.

    ``str(err)`` is always a single human-readable line suitable for printing
    straight into the terminal.
    """


class MalformedManifestRecord(VFSError):
    """A manifest line did not yield a kind and a path."""


class RelativeManifestPath(VFSError):
    """A manifest path did not start with the root separator."""


class ManifestReadFailure(VFSError):
    """The manifest file could not be read or decoded."""


def _at_line(msg: str, line_number: Optional[int]) -> str:
    return f"line {line_number}: {msg}" if line_number is not None else msg


# ---------- Manifest parser ----------
def parse_manifest_line(line: str) -> List[str]:
    """Split one manifest line into its fields.

    Fields are separated by ``;`` outside double-quote regions. Inside a
    quoted region ``""`` is decoded as one literal ``"``; every other quote
    character toggles the quoted state and is dropped. The parser never
    fails: an unbalanced quote simply keeps the rest of the line in one field.
    """
    fields: List[str] = []
    current: List[str] = []
    in_quotes = False
    i = 0
    n = len(line)
    while i < n:
        ch = line[i]
        if ch == QUOTE:
            if in_quotes and i + 1 < n and line[i + 1] == QUOTE:
                current.append(QUOTE)
                i += 1
            else:
                in_quotes = not in_quotes
        elif ch == FIELD_DELIMITER and not in_quotes:
            fields.append("".join(current))
            current = []
        else:
            current.append(ch)
        i += 1
    fields.append("".join(current))
    return fields


def is_skipped_line(line: str) -> bool:
    """Return True for blank lines and ``#`` comments."""
    stripped = line.strip()
    return not stripped or stripped.startswith(COMMENT_PREFIX)


@dataclass(frozen=True)
class ManifestRecord:
    kind: str
    absolute_path: str
    content: str = ""


def record_from_fields(fields: List[str], line_number: Optional[int] = None) -> ManifestRecord:
    """Validate parsed fields and turn them into a ``ManifestRecord``.

    Parameters
    ----------
    fields : list of str
        Output of ``parse_manifest_line``.
    line_number : int, optional
        1-based line number, used only to make error messages more useful.

    Raises
    ------
    MalformedManifestRecord
        Fewer than two fields (the content field may be omitted and then
        defaults to the empty string).
    RelativeManifestPath
        The path does not start with ``/``.
    """
    if len(fields) < 2:
        raise MalformedManifestRecord(_at_line(
            f"invalid manifest record, expected kind;path;content but got {len(fields)} field(s)", line_number))
    kind = fields[0].strip()
    path = fields[1].strip()
    content = fields[2].strip() if len(fields) > 2 else ""
    if not path.startswith(SEPARATOR):
        raise RelativeManifestPath(_at_line(
            f"manifest paths must be absolute (start with {SEPARATOR}): {path!r}", line_number))
    return ManifestRecord(kind=kind, absolute_path=path, content=content)


def iter_manifest_records(lines: Iterable[str]) -> Iterator[ManifestRecord]:
    """Yield a record for every non-blank, non-comment manifest line."""
    for number, line in enumerate(lines, start=1):
        if is_skipped_line(line):
            continue
        yield record_from_fields(parse_manifest_line(line), number)


def _segments(path: str) -> List[str]:
    return [s for s in path.split(SEPARATOR) if s]


# ---------- Content codec ----------
class Encoding(Enum):
    PLAIN_TEXT = "text"
    BASE64 = "base64"


_B64_RE = re.compile(r"[A-Za-z0-9+/]*={0,2}")


def _b64decode(text: str) -> Optional[bytes]:
    """Strict standard-alphabet decode; None when ``text`` is not base64.

    Padding may be omitted, but a length of 1 (mod 4) can never be valid.
    """
    if not text or not _B64_RE.fullmatch(text):
        return None
    body = text.rstrip("=")
    if len(body) % 4 == 1:
        return None
    if "=" in text and len(text) % 4 != 0:
        return None
    try:
        return base64.b64decode(body + "=" * (-len(body) % 4), validate=True)
    except (binascii.Error, ValueError):
        return None


class FileContent:
    """Payload of a file node: the stored text plus the base64 view of it.

    The decision between text and base64 is a structural alphabet check and
    nothing more, so an ordinary word like ``cafe`` counts as encoded.
    """

    def __init__(self, raw: str = ""):
        self._raw = raw or ""

    def raw(self) -> str:
        return self._raw

    def is_encoded(self) -> bool:
        return _b64decode(self._raw) is not None

    @property
    def encoding(self) -> Encoding:
        return Encoding.BASE64 if self.is_encoded() else Encoding.PLAIN_TEXT

    def as_text(self) -> str:
        decoded = _b64decode(self._raw)
        if decoded is None:
            return self._raw
        return decoded.decode("utf-8", errors="replace")

    def __eq__(self, other):
        return isinstance(other, FileContent) and other._raw == self._raw

    def __repr__(self) -> str:
        return f"FileContent({self._raw!r})"


# ---------- Tree ----------
class NodeKind(Enum):
    DIRECTORY = "dir"
    FILE = "file"


class VFSNode:
    """One entry of the tree.

    Directories own their children through ``children``. The link back to the
    parent is a weak reference so the only owning edges point downwards.
    """

    def __init__(self, name: str, kind: NodeKind, parent: Optional["VFSNode"] = None,
                 payload: Optional[FileContent] = None):
        self.name = name
        self.kind = kind
        self.payload: Optional[FileContent] = None
        self.children: Optional[Dict[str, "VFSNode"]] = None
        if kind is NodeKind.DIRECTORY:
            self.children = {}
        else:
            self.payload = payload if payload is not None else FileContent()
        self._parent = weakref.ref(parent) if parent is not None else None

    @property
    def parent(self) -> Optional["VFSNode"]:
        return self._parent() if self._parent is not None else None

    def is_dir(self) -> bool:
        return self.kind is NodeKind.DIRECTORY

    def is_file(self) -> bool:
        return self.kind is NodeKind.FILE

    def child(self, name: str) -> Optional["VFSNode"]:
        if self.children is None:
            return None
        return self.children.get(name)

    def child_dir(self, name: str) -> Optional["VFSNode"]:
        node = self.child(name)
        return node if node is not None and node.is_dir() else None

    def display_name(self) -> str:
        return self.name + SEPARATOR if self.is_dir() else self.name

    def __repr__(self) -> str:
        return f"VFSNode({self.name!r}, {self.kind.value})"


class VirtualFileSystem:
    """The tree plus its current-directory cursor.

    A fresh instance holds only the root directory. Populate it by replaying
    manifest records with ``apply`` (or use ``load_manifest``), then navigate
    with ``change_directory``.
    """

    def __init__(self):
        self.root = VFSNode("", NodeKind.DIRECTORY)
        self.current = self.root

    # ---- construction
    @classmethod
    def from_records(cls, records: Iterable[ManifestRecord]) -> "VirtualFileSystem":
        vfs = cls()
        for record in records:
            vfs.apply(record)
        return vfs

    @classmethod
    def from_lines(cls, lines: Iterable[str]) -> "VirtualFileSystem":
        """Build a tree from manifest text lines; the first bad record aborts."""
        return cls.from_records(iter_manifest_records(lines))

    def apply(self, record: ManifestRecord) -> None:
        """Apply one manifest record to the tree.

        Missing intermediate directories are created, and an intermediate
        segment that currently names a file is replaced by a directory. A
        ``file`` record always replaces whatever sits at its final segment
        (last write wins); a ``dir`` record only creates the directory when
        nothing of that name exists yet, so replaying it keeps its children.
        Records of any other kind are ignored.
        """
        if record.kind not in (KIND_FILE, KIND_DIR):
            logger.debug("ignoring record of unknown kind %r for %s", record.kind, record.absolute_path)
            return
        parts = _segments(record.absolute_path)
        if not parts:
            if record.kind == KIND_FILE:
                raise MalformedManifestRecord(f"the root directory cannot be a file: {record.absolute_path!r}")
            return
        node = self.root
        for part in parts[:-1]:
            nxt = node.children.get(part)
            if nxt is None or not nxt.is_dir():
                nxt = VFSNode(part, NodeKind.DIRECTORY, node)
                node.children[part] = nxt
            node = nxt
        last = parts[-1]
        if record.kind == KIND_FILE:
            node.children[last] = VFSNode(last, NodeKind.FILE, node, FileContent(record.content))
            logger.debug("file %s (%s)", record.absolute_path, node.children[last].payload.encoding.value)
        elif last not in node.children:
            node.children[last] = VFSNode(last, NodeKind.DIRECTORY, node)
            logger.debug("dir %s", record.absolute_path)

    # ---- queries
    def list_current(self) -> List[str]:
        """Sorted names in the current directory, directories suffixed with ``/``."""
        return sorted(child.display_name() for child in self.current.children.values())

    def change_directory(self, target: str) -> bool:
        """Move the cursor; return False (cursor untouched) when ``target`` is not a directory.

        ``/`` goes to the root and ``..`` goes up one level (staying at the
        root when already there). Any other target not starting with ``/`` must
        name a direct child directory of the cursor. Absolute targets are
        walked from the root segment by segment, skipping empty segments.
        """
        if target == SEPARATOR:
            self.current = self.root
            return True
        if target == PARENT:
            parent = self.current.parent
            if parent is not None:
                self.current = parent
            return True
        if not target.startswith(SEPARATOR):
            node = self.current.child_dir(target)
            if node is None:
                return False
            self.current = node
            return True
        node = self.root
        for part in _segments(target):
            node = node.child_dir(part)
            if node is None:
                return False
        self.current = node
        return True

    def current_path(self) -> str:
        return self.path_of(self.current)

    def path_of(self, node: VFSNode) -> str:
        names: List[str] = []
        while node is not None and node is not self.root:
            names.append(node.name)
            node = node.parent
        return SEPARATOR + SEPARATOR.join(reversed(names))

    def lookup(self, path: str) -> Optional[VFSNode]:
        """Resolve an absolute path, or one relative to the cursor, to a node.

        Only plain names are followed (no ``..`` handling); None when any
        segment is missing or a file sits in the middle of the path.
        """
        node = self.root if path.startswith(SEPARATOR) else self.current
        for part in _segments(path):
            node = node.child(part)
            if node is None:
                return None
        return node

    def walk(self, node: Optional[VFSNode] = None) -> Iterator[VFSNode]:
        """Yield every node below ``node`` (default: root) in sorted pre-order."""
        start = node if node is not None else self.root
        stack = [start.children[name] for name in sorted(start.children or (), reverse=True)]
        while stack:
            current = stack.pop()
            yield current
            if current.children:
                stack.extend(current.children[name] for name in sorted(current.children, reverse=True))

    def node_count(self) -> int:
        return sum(1 for _ in self.walk())


def load_manifest(path: str) -> VirtualFileSystem:
    """Read a manifest file in one go and build the tree it describes.

    The whole load fails on the first invalid record; no partially built tree
    is ever returned.

    Raises
    ------
    ManifestReadFailure
        The file could not be opened or is not valid UTF-8.
    MalformedManifestRecord, RelativeManifestPath
        A record failed validation.
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            lines = f.read().splitlines()
    except (OSError, UnicodeDecodeError) as e:
        raise ManifestReadFailure(f"cannot read manifest {path}: {e}") from e
    vfs = VirtualFileSystem.from_lines(lines)
    logger.info("loaded manifest %s (%d nodes)", path, vfs.node_count())
    return vfs
