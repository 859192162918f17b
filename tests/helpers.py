"""Scripted stand-ins for the HTTP source adapters."""

import threading

from bible_importer.models import RawVerse
from bible_importer.sources import EmptyResult

SMALL_CANON = {
    "Genesis": [3, 2],
    "Obadiah": [21],
    "John": [4, 2, 16],
}


def chapter_verses(structure, book, chapter, translation="KJV"):
    """A complete chapter as a source would return it, with verse-number prefixes."""
    return [
        RawVerse(verse=v, text=f"{v}¶{translation} text of {book} {chapter}:{v}")
        for v in range(1, structure.verse_count(book, chapter) + 1)
    ]


class ScriptedSource:
    """
    Stand-in SourceAdapter.

    responses maps (translation, book, chapter) to a list of results; each
    call consumes one entry and the last entry repeats. Results are verse
    lists or exception instances to raise. Without a scripted entry the
    source serves whole chapters from the structure, or raises EmptyResult
    when serve_all is False.
    """

    def __init__(self, source_id, translations, structure, responses=None, serve_all=True):
        self.source_id = source_id
        self.translation_codes = {t: t for t in translations}
        self.structure = structure
        self.responses = {key: list(items) for key, items in (responses or {}).items()}
        self.serve_all = serve_all
        self.calls = []
        self._lock = threading.Lock()

    def supports(self, translation):
        return translation in self.translation_codes

    def fetch(self, translation, book, chapter):
        key = (translation, book, chapter)
        with self._lock:
            self.calls.append(key)
            queue = self.responses.get(key)
            item = None
            if queue:
                item = queue.pop(0) if len(queue) > 1 else queue[0]

        if item is None:
            if not self.serve_all:
                raise EmptyResult(f"{self.source_id} has nothing for {key}", self.source_id)
            item = chapter_verses(self.structure, book, chapter, translation)
        if isinstance(item, Exception):
            raise item
        return list(item)
