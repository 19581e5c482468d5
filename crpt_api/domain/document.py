from __future__ import annotations

import base64
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .errors import EncodingError


@dataclass(frozen=True)
class Document:
    """A product document as the JSON text the API expects.

    The client does not model the document schema; it only checks that the
    content is a JSON object before shipping it.
    """

    content: str

    @classmethod
    def from_obj(cls, obj: dict[str, Any]) -> "Document":
        try:
            return cls(content=json.dumps(obj, ensure_ascii=False))
        except (TypeError, ValueError) as e:
            raise EncodingError("document is not JSON-serializable.", details={"error": str(e)}) from e

    @classmethod
    def from_path(cls, path: Path) -> "Document":
        # Tolerate a UTF-8 BOM from editors on Windows.
        try:
            return cls(content=path.read_text(encoding="utf-8-sig"))
        except UnicodeDecodeError as e:
            raise EncodingError(
                "document file is not valid UTF-8.",
                details={"path": str(path), "position": e.start},
            ) from e

    def to_json(self) -> str:
        return self.content


class DocumentEncoder:
    """Builds the "create document" request body.

    Shape::

        {"document_format": "MANUAL", "product_document": <base64 JSON>,
         "type": "LP_INTRODUCE_GOODS", "signature": <detached signature>}
    """

    def __init__(self, *, document_format: str = "MANUAL", document_type: str = "LP_INTRODUCE_GOODS") -> None:
        self._document_format = document_format
        self._document_type = document_type

    def encode(self, document: Document, signature: str) -> dict[str, str]:
        raw = document.to_json()
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as e:
            raise EncodingError(
                "document content is not valid JSON.",
                details={"line": e.lineno, "column": e.colno, "error": e.msg},
            ) from e
        if not isinstance(parsed, dict):
            raise EncodingError(
                "document content must be a JSON object.",
                details={"given_type": type(parsed).__name__},
            )

        signature = (signature or "").strip()
        if not signature:
            raise EncodingError("signature cannot be empty.")

        product_document = base64.b64encode(raw.encode("utf-8")).decode("ascii")
        return {
            "document_format": self._document_format,
            "product_document": product_document,
            "type": self._document_type,
            "signature": signature,
        }
