"""
Versioned document store interface and its JSON-file implementation.

The engine only talks to ``DocumentStore``. ``LocalDocumentStore`` keeps
one directory per mindmap holding ``mindmap.json`` and ``cards.json``;
every write goes to a temp file in the same directory and is renamed
into place.
"""

import json
import os
import logging
import tempfile
import threading
import uuid
from pathlib import Path
from typing import List, Optional, Protocol
from urllib.parse import quote

from ..errors import DocumentCorruptError, NotFoundError, ValidationError
from .models import Card, CardUpdate, MindMapDoc, now_iso


class DocumentStore(Protocol):
    """Persistence operations the sync engine depends on."""

    def create_mindmap(self, domain_id: str, title: str, owner: Optional[int] = None,
                       content: str = "", github_repo: Optional[str] = None) -> MindMapDoc: ...

    def get_mindmap(self, domain_id: str, mmid: int) -> Optional[MindMapDoc]: ...

    def save_mindmap(self, doc: MindMapDoc) -> None: ...

    def list_cards(self, domain_id: str, mmid: int, node_id: Optional[str] = None) -> List[Card]: ...

    def get_card(self, domain_id: str, mmid: int, doc_id: str) -> Optional[Card]: ...

    def create_card(self, domain_id: str, mmid: int, node_id: str, title: str, content: str = "",
                    order: Optional[int] = None, owner: Optional[int] = None) -> Card: ...

    def update_card(self, domain_id: str, mmid: int, doc_id: str, update: CardUpdate) -> Card: ...

    def delete_card(self, domain_id: str, mmid: int, doc_id: str) -> None: ...

    def delete_cards(self, domain_id: str, mmid: int) -> int: ...

    def replace_cards(self, domain_id: str, mmid: int, cards: List[Card]) -> None: ...


def write_json_atomic(path: Path, payload) -> None:
    """Write JSON to ``path`` through a temp file in the same directory."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    temp_file = Path(temp_name)
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            json.dump(payload, f, ensure_ascii=False, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_file, path)
    except BaseException:
        temp_file.unlink(missing_ok=True)
        raise


def new_card(existing: List[Card], domain_id: str, mmid: int, node_id: str, title: str,
             content: str = "", order: Optional[int] = None, owner: Optional[int] = None) -> Card:
    """Build an unsaved Card; cid is the next number for (mindmap, node) among ``existing``."""
    cid = max((c.cid for c in existing if c.node_id == node_id), default=0) + 1
    return Card(
        doc_id=uuid.uuid4().hex,
        domain_id=domain_id,
        mmid=mmid,
        node_id=node_id,
        cid=cid,
        title=title or "untitled",
        content=content or "",
        order=order,
        owner=owner,
    )


class LocalDocumentStore:
    """DocumentStore backed by JSON files under ``documents_dir``."""

    def __init__(self, documents_dir: Path):
        self.documents_dir = Path(documents_dir)
        self.logger = logging.getLogger('mindsync.store')
        self._lock = threading.RLock()

    def _mindmap_dir(self, domain_id: str, mmid: int) -> Path:
        return self.documents_dir / quote(domain_id, safe='') / str(int(mmid))

    def _mindmap_file(self, domain_id: str, mmid: int) -> Path:
        return self._mindmap_dir(domain_id, mmid) / "mindmap.json"

    def _cards_file(self, domain_id: str, mmid: int) -> Path:
        return self._mindmap_dir(domain_id, mmid) / "cards.json"

    # Mindmaps

    def create_mindmap(self, domain_id: str, title: str, owner: Optional[int] = None,
                       content: str = "", github_repo: Optional[str] = None) -> MindMapDoc:
        if not title or not title.strip():
            raise ValidationError("Mindmap title is required", error_code="TITLE_REQUIRED")

        with self._lock:
            domain_dir = self.documents_dir / quote(domain_id, safe='')
            existing = [int(p.name) for p in domain_dir.iterdir() if p.name.isdigit()] if domain_dir.exists() else []
            mmid = max(existing, default=0) + 1

            doc = MindMapDoc(domain_id=domain_id, mmid=mmid, title=title.strip(), content=content,
                             owner=owner, github_repo=github_repo)
            self.save_mindmap(doc)
            self.logger.info(f"Created mindmap {domain_id}/{mmid}: {doc.title}")
            return doc

    def get_mindmap(self, domain_id: str, mmid: int) -> Optional[MindMapDoc]:
        path = self._mindmap_file(domain_id, mmid)
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return MindMapDoc.from_dict(json.load(f))
        except FileNotFoundError:
            return None
        except (ValueError, KeyError, TypeError) as e:
            # JSONDecodeError and UnicodeDecodeError are ValueErrors too
            raise DocumentCorruptError(f"Mindmap {domain_id}/{mmid} cannot be decoded: {e}",
                                       path=str(path)) from e

    def require_mindmap(self, domain_id: str, mmid: int) -> MindMapDoc:
        doc = self.get_mindmap(domain_id, mmid)
        if doc is None:
            raise NotFoundError(f"Mindmap {domain_id}/{mmid} not found", error_code="MINDMAP_NOT_FOUND")
        return doc

    def save_mindmap(self, doc: MindMapDoc) -> None:
        with self._lock:
            doc.update_at = now_iso()
            write_json_atomic(self._mindmap_file(doc.domain_id, doc.mmid), doc.to_dict())

    # Cards

    def _load_cards(self, domain_id: str, mmid: int) -> List[Card]:
        path = self._cards_file(domain_id, mmid)
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return [Card.from_dict(c) for c in json.load(f)]
        except FileNotFoundError:
            return []
        except (ValueError, KeyError, TypeError) as e:
            raise DocumentCorruptError(f"Cards of {domain_id}/{mmid} cannot be decoded: {e}",
                                       path=str(path)) from e

    def _write_cards(self, domain_id: str, mmid: int, cards: List[Card]) -> None:
        write_json_atomic(self._cards_file(domain_id, mmid), [c.to_dict() for c in cards])

    def list_cards(self, domain_id: str, mmid: int, node_id: Optional[str] = None) -> List[Card]:
        """Cards of the mindmap (optionally of one node), sorted by (order, cid)."""
        cards = self._load_cards(domain_id, mmid)
        if node_id is not None:
            cards = [c for c in cards if c.node_id == node_id]
        return sorted(cards, key=lambda c: (c.node_id,) + c.sort_key())

    def get_card(self, domain_id: str, mmid: int, doc_id: str) -> Optional[Card]:
        for card in self._load_cards(domain_id, mmid):
            if card.doc_id == doc_id:
                return card
        return None

    def create_card(self, domain_id: str, mmid: int, node_id: str, title: str, content: str = "",
                    order: Optional[int] = None, owner: Optional[int] = None) -> Card:
        if not node_id:
            raise ValidationError("nodeId is required", error_code="NODE_ID_REQUIRED")

        with self._lock:
            cards = self._load_cards(domain_id, mmid)
            card = new_card(cards, domain_id, mmid, node_id, title, content, order, owner)
            cards.append(card)
            self._write_cards(domain_id, mmid, cards)
            return card

    def update_card(self, domain_id: str, mmid: int, doc_id: str, update: CardUpdate) -> Card:
        with self._lock:
            cards = self._load_cards(domain_id, mmid)
            for card in cards:
                if card.doc_id == doc_id:
                    if update.title is not None:
                        card.title = update.title
                    if update.content is not None:
                        card.content = update.content
                    if update.order is not None:
                        card.order = update.order
                    card.update_at = now_iso()
                    self._write_cards(domain_id, mmid, cards)
                    return card
        raise NotFoundError(f"Card '{doc_id}' not found", error_code="CARD_NOT_FOUND")

    def delete_card(self, domain_id: str, mmid: int, doc_id: str) -> None:
        with self._lock:
            cards = self._load_cards(domain_id, mmid)
            remaining = [c for c in cards if c.doc_id != doc_id]
            if len(remaining) == len(cards):
                raise NotFoundError(f"Card '{doc_id}' not found", error_code="CARD_NOT_FOUND")
            self._write_cards(domain_id, mmid, remaining)

    def delete_cards(self, domain_id: str, mmid: int) -> int:
        """Delete every card of the mindmap. Returns the number removed."""
        with self._lock:
            count = len(self._load_cards(domain_id, mmid))
            self._write_cards(domain_id, mmid, [])
            self.logger.debug(f"Deleted {count} cards of {domain_id}/{mmid}")
            return count

    def replace_cards(self, domain_id: str, mmid: int, cards: List[Card]) -> None:
        """Swap the whole card set in one write."""
        with self._lock:
            self._write_cards(domain_id, mmid, cards)
            self.logger.debug(f"Replaced card set of {domain_id}/{mmid} with {len(cards)} cards")
