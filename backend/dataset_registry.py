"""
Dataset Registry - Bundled Sample Content

Maps (category, chunk) to an immutable tuple of sample strings. Each chunk is a
JSON array stored as `<category>-<chunk>.json` in the data directory and is
read at most once per registry.

Two modes:
- chunked: one chunk per lookup, default chunk "a"
- static: every chunk of a category merged into one table, chunk ignored
"""

import json
import logging
import re
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from ui_messages import DEFAULT_CHUNK, ContentCategory

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = Path(__file__).resolve().parent / "data"

MODE_CHUNKED = "chunked"
MODE_STATIC = "static"
DATASET_MODES = (MODE_CHUNKED, MODE_STATIC)

# Chunk ids come from the UI, keep them to plain file-name tokens
_CHUNK_ID_RE = re.compile(r"^[a-z0-9_]+$")

Dataset = Tuple[str, ...]


class DatasetRegistry:
    def __init__(self, data_dir: Union[str, Path, None] = None, mode: str = MODE_CHUNKED) -> None:
        if mode not in DATASET_MODES:
            raise ValueError(f"Unsupported dataset mode: {mode!r} (expected one of {', '.join(DATASET_MODES)})")
        self.data_dir = Path(data_dir) if data_dir else DEFAULT_DATA_DIR
        self.mode = mode
        self._chunks: Dict[Tuple[ContentCategory, str], Dataset] = {}
        self._static: Dict[ContentCategory, Dataset] = {}

    def get(self, category: ContentCategory, chunk: Optional[str] = None) -> Optional[Dataset]:
        """Resolve the dataset for a category. None means no such dataset."""
        category = ContentCategory.parse(category)
        if category.is_synthetic:
            return None
        if self.mode == MODE_STATIC:
            return self._get_static(category)
        return self._get_chunk(category, chunk or DEFAULT_CHUNK)

    def available_chunks(self, category: ContentCategory) -> List[str]:
        """Chunk ids bundled for a category, sorted."""
        if category.is_synthetic or not self.data_dir.is_dir():
            return []
        prefix = f"{category.value}-"
        chunks = []
        for path in self.data_dir.glob(f"{prefix}*.json"):
            chunk = path.stem[len(prefix):]
            if _CHUNK_ID_RE.match(chunk):
                chunks.append(chunk)
        return sorted(chunks)

    def clear(self) -> None:
        self._chunks.clear()
        self._static.clear()

    def _get_chunk(self, category: ContentCategory, chunk: str) -> Optional[Dataset]:
        key = (category, chunk)
        if key in self._chunks:
            return self._chunks[key]
        if not _CHUNK_ID_RE.match(chunk):
            logger.warning(f"⚠️ Rejected chunk id {chunk!r} for {category.value}")
            return None
        path = self.data_dir / f"{category.value}-{chunk}.json"
        if not path.is_file():
            logger.error(f"❌ No data for {category.value}-{chunk} in {self.data_dir}")
            return None
        try:
            dataset = self._read(path)
        except (OSError, ValueError) as e:
            logger.error(f"❌ Unreadable dataset {path}: {e}")
            return None
        self._chunks[key] = dataset
        logger.info(f"📦 Loaded {category.value}-{chunk} ({len(dataset)} entries)")
        return dataset

    def _get_static(self, category: ContentCategory) -> Optional[Dataset]:
        if category in self._static:
            return self._static[category]
        chunks = self.available_chunks(category)
        if not chunks:
            logger.error(f"❌ No data for {category.value} in {self.data_dir}")
            return None
        merged: List[str] = []
        for chunk in chunks:
            merged.extend(self._get_chunk(category, chunk) or ())
        dataset = tuple(merged)
        self._static[category] = dataset
        return dataset

    @staticmethod
    def _read(path: Path) -> Dataset:
        with path.open(encoding="utf-8") as fh:
            raw = json.load(fh)
        if not isinstance(raw, list) or not all(isinstance(item, str) for item in raw):
            raise ValueError(f"Dataset file {path} must contain a JSON array of strings")
        return tuple(raw)
