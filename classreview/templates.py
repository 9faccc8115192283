"""Durable store of named column-mapping templates."""

import json
import logging
import os
import tempfile
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from pydantic import ValidationError

from classreview.errors import TemplateStoreError
from classreview.models import MappingTemplate, TemplateDraft

logger = logging.getLogger(__name__)

TEMPLATES_KEY = 'bulletin-mapping-templates'


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryBackend:
    """Key-value backend kept in a dict (tests, ephemeral sessions)."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self.data: Dict[str, str] = dict(initial or {})

    def read(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def write(self, key: str, value: str) -> None:
        self.data[key] = value


class JsonFileBackend:
    """Key-value backend storing each key as `<directory>/<key>.json`."""

    def __init__(self, directory: str):
        self.directory = directory

    def _path(self, key: str) -> str:
        return os.path.join(self.directory, f"{key}.json")

    def read(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not os.path.exists(path):
            return None
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return f.read()
        except OSError as e:
            raise TemplateStoreError(f"Cannot read {path}: {e}") from e

    def write(self, key: str, value: str) -> None:
        os.makedirs(self.directory, exist_ok=True)
        path = self._path(key)
        fd, tmp_path = tempfile.mkstemp(dir=self.directory, prefix=f".{key}.", suffix='.tmp')
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                f.write(value)
            os.replace(tmp_path, path)
        except OSError as e:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise TemplateStoreError(f"Cannot write {path}: {e}") from e


class TemplateStore:
    """
    Mapping templates persisted as one JSON collection.

    Every mutation reads the whole collection, modifies it and writes it back.
    There is no locking: callers must not run two mutations concurrently.
    Entries that fail validation are hidden from readers but written back
    unchanged by every mutation.
    """

    def __init__(self, backend=None, clock: Callable[[], datetime] = utc_now):
        self.backend = backend if backend is not None else InMemoryBackend()
        self.clock = clock

    def _load(self) -> Tuple[List[MappingTemplate], List[Any]]:
        """Readable templates, plus the raw entries that failed validation."""
        raw = self.backend.read(TEMPLATES_KEY)
        if not raw:
            return [], []
        try:
            entries = json.loads(raw)
        except json.JSONDecodeError as e:
            raise TemplateStoreError(f"Template collection is not valid JSON: {e}") from e
        if not isinstance(entries, list):
            raise TemplateStoreError(
                f"Template collection must be a list, got {type(entries).__name__}"
            )

        templates = []
        unreadable = []
        for position, entry in enumerate(entries):
            try:
                templates.append(MappingTemplate.model_validate(entry))
            except ValidationError as e:
                logger.warning("Skipping unreadable template at position %d: %s", position, e)
                unreadable.append(entry)
        return templates, unreadable

    def _read_collection(self) -> Tuple[List[MappingTemplate], List[Any]]:
        try:
            return self._load()
        except TemplateStoreError as e:
            logger.error("Could not load mapping templates, using an empty collection: %s", e)
            return [], []

    def _dump(self, templates: List[MappingTemplate], unreadable: List[Any]) -> None:
        # unreadable entries are written back untouched
        payload = [t.model_dump(mode='json', by_alias=True) for t in templates] + list(unreadable)
        self.backend.write(TEMPLATES_KEY, json.dumps(payload, ensure_ascii=False, indent=2))

    def list_all(self) -> List[MappingTemplate]:
        """All stored templates; an unreadable collection yields an empty list."""
        templates, _ = self._read_collection()
        return templates

    def get_by_id(self, template_id: str) -> Optional[MappingTemplate]:
        for template in self.list_all():
            if template.id == template_id:
                return template
        return None

    def save(self, template: Union[MappingTemplate, TemplateDraft]) -> MappingTemplate:
        """
        Create or fully replace a template.

        An existing id keeps its original dateCreated; a missing id gets a new
        uuid. lastUsed is set to now either way. An unreadable entry with the
        same id is replaced.

        Args:
            template: Template or draft to persist

        Returns:
            The template as stored
        """
        templates, unreadable = self._read_collection()
        now = self.clock()
        existing = None
        if template.id:
            existing = next((t for t in templates if t.id == template.id), None)

        stored = MappingTemplate(
            id=template.id or str(uuid.uuid4()),
            name=template.name,
            description=template.description,
            date_created=existing.date_created if existing else now,
            last_used=now,
            source_type=template.source_type,
            mapping_config=template.mapping_config,
        )

        if existing:
            templates = [stored if t.id == stored.id else t for t in templates]
            logger.info("Updated mapping template '%s' (%s)", stored.name, stored.id)
        else:
            templates.append(stored)
            logger.info("Created mapping template '%s' (%s)", stored.name, stored.id)
        unreadable = [e for e in unreadable if _entry_id(e) != stored.id]
        self._dump(templates, unreadable)
        return stored

    def delete(self, template_id: str) -> bool:
        """Remove a template; returns False (and writes nothing) if it does not exist."""
        templates, unreadable = self._read_collection()
        remaining = [t for t in templates if t.id != template_id]
        remaining_unreadable = [e for e in unreadable if _entry_id(e) != template_id]
        if len(remaining) == len(templates) and len(remaining_unreadable) == len(unreadable):
            return False
        self._dump(remaining, remaining_unreadable)
        logger.info("Deleted mapping template %s", template_id)
        return True

    def touch_last_used(self, template_id: str) -> None:
        """Record that a template was applied. No-op for an unknown id."""
        templates, unreadable = self._read_collection()
        found = False
        for index, template in enumerate(templates):
            if template.id == template_id:
                templates[index] = template.model_copy(update={'last_used': self.clock()})
                found = True
        if found:
            self._dump(templates, unreadable)


def _entry_id(entry: Any) -> Optional[str]:
    return entry.get('id') if isinstance(entry, dict) else None
