"""File-backed graph document store."""

from __future__ import annotations

import json
import os
import posixpath
import tempfile
from pathlib import Path
from typing import Any, List, Optional, Protocol

from .graph import GRAPH_SUFFIX, Graph, GraphFormatError, GraphNotFoundError


def write_json_atomic(path: Path | str, payload: Any) -> None:
    """Write ``payload`` as JSON through a temp file and ``os.replace``."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path: Path | None = None
    try:
        with tempfile.NamedTemporaryFile(
            "w", delete=False, dir=path.parent, prefix=path.name, suffix=".tmp", encoding="utf-8"
        ) as tmp_file:
            json.dump(payload, tmp_file, indent=2)
            tmp_file.write("\n")
            tmp_path = Path(tmp_file.name)
        os.replace(str(tmp_path), str(path))
    except OSError:
        if tmp_path is not None:
            try:
                tmp_path.unlink()
            except OSError:
                pass
        raise


class GraphStore(Protocol):
    """Read/write contract the navigator and timing storage rely on."""

    def load_graph(self, graph_id: str) -> Graph: ...

    def save_graph(self, graph: Graph) -> None: ...

    def resolve_ref(self, ref: str, relative_to: Optional[str] = None) -> Optional[str]: ...

    def read_document(self, doc_id: str) -> str: ...

    def write_document(self, doc_id: str, content: str) -> None: ...


class FileGraphStore:
    """Graph documents and linked notes stored under one base directory.

    Identifiers are POSIX paths relative to ``base_path``. References resolve
    against the referencing graph's folder first, then against the base.
    """

    def __init__(self, base_path: Path | str = ".") -> None:
        self.base_path = Path(base_path)

    def _path(self, doc_id: str) -> Path:
        relative = Path(doc_id)
        if relative.is_absolute() or ".." in relative.parts:
            raise GraphNotFoundError(f"Refusing to read outside the store: {doc_id}")
        return self.base_path / relative

    def exists(self, doc_id: str) -> bool:
        try:
            return self._path(doc_id).is_file()
        except GraphNotFoundError:
            return False

    def load_graph(self, graph_id: str) -> Graph:
        path = self._path(graph_id)
        try:
            with path.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
        except FileNotFoundError as exc:
            raise GraphNotFoundError(f"Canvas file not found: {graph_id}") from exc
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise GraphFormatError(f"Failed to parse canvas file {graph_id}: {exc}") from exc
        except OSError as exc:
            raise GraphNotFoundError(f"Failed to read canvas file {graph_id}: {exc}") from exc
        return Graph.from_dict(graph_id, data)

    def save_graph(self, graph: Graph) -> None:
        write_json_atomic(self._path(graph.graph_id), graph.to_dict())

    def resolve_ref(self, ref: str, relative_to: Optional[str] = None) -> Optional[str]:
        candidates = []
        if relative_to:
            folder = posixpath.dirname(relative_to)
            candidates.append(posixpath.normpath(posixpath.join(folder, ref)))
        candidates.append(posixpath.normpath(ref))
        for candidate in candidates:
            if self.exists(candidate):
                return candidate
        return None

    def read_document(self, doc_id: str) -> str:
        try:
            return self._path(doc_id).read_text(encoding="utf-8")
        except OSError as exc:
            raise GraphNotFoundError(f"Document not found: {doc_id}") from exc
        except UnicodeDecodeError as exc:
            raise GraphFormatError(f"Document is not valid UTF-8: {doc_id}") from exc

    def write_document(self, doc_id: str, content: str) -> None:
        path = self._path(doc_id)
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        tmp_path.write_text(content, encoding="utf-8")
        tmp_path.replace(path)

    def list_graphs(self) -> List[str]:
        if not self.base_path.exists():
            return []
        return sorted(
            path.relative_to(self.base_path).as_posix()
            for path in self.base_path.rglob(f"*{GRAPH_SUFFIX}")
            if path.is_file()
        )
