"""Local artifact repository that later builds of the same run install from."""

from __future__ import annotations

import datetime as _dt
import json
import logging
import shutil
import tempfile
import threading
from pathlib import Path
from typing import Dict, List, Optional

from .errors import BuildError, CollisionError
from .models import Artifact, IndexEntry
from .utils import combined_digest, dump_json, ensure_directory, sha256_file

logger = logging.getLogger(__name__)

INDEX_NAME = "index.json"
METADATA_NAME = "artifact.json"
UNVERSIONED = "unversioned"


class IncrementalRepository:
    """Append-only artifact store with a regenerable index.

    Artifacts are staged under ``.incoming`` and renamed into ``pool`` in one
    step, so an interrupted run never leaves a partial artifact visible.
    ``publish`` and ``reindex`` share one lock; concurrent builders must go
    through :meth:`publish_and_reindex`.
    """

    def __init__(self, root: str | Path) -> None:
        self.root = ensure_directory(Path(root).resolve())
        self.pool_dir = ensure_directory(self.root / "pool")
        self.staging_dir = ensure_directory(self.root / ".incoming")
        self.index_path = self.root / INDEX_NAME
        self.lock = threading.RLock()
        self._entries: Optional[List[IndexEntry]] = None

    def artifact_dir(self, name: str, version: str) -> Path:
        return self.pool_dir / name / (version or UNVERSIONED)

    def as_install_source(self) -> str:
        return self.root.as_uri()

    def publish(self, artifact: Artifact) -> IndexEntry:
        if not artifact.files:
            raise ValueError(f"Artifact {artifact.name} has no files to publish")
        names = [path.name for path in artifact.files]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise BuildError(artifact.name, f"artifact files share a name: {', '.join(duplicates)}")
        with self.lock:
            hashes = artifact.file_hashes()
            digest = combined_digest(hashes)
            target = self.artifact_dir(artifact.name, artifact.version)
            if target.exists():
                existing = self._read_metadata(target)
                if existing is None:
                    raise CollisionError(
                        f"Cannot publish {artifact.name} {artifact.version or UNVERSIONED}: "
                        f"{target} holds unreadable or incomplete artifact metadata"
                    )
                if existing.digest == digest:
                    logger.info("%s %s already published, skipping", artifact.name, artifact.version)
                    return existing
                raise CollisionError(
                    f"Artifact {artifact.name} {artifact.version or UNVERSIONED} is already "
                    f"published with different content at {target}"
                )

            staging = Path(tempfile.mkdtemp(prefix=f"{artifact.name}-", dir=str(self.staging_dir)))
            try:
                files = []
                for path, (file_name, file_hash) in zip(artifact.files, hashes):
                    shutil.copy2(path, staging / file_name)
                    files.append({"name": file_name, "sha256": file_hash, "size": path.stat().st_size})
                entry = IndexEntry(
                    name=artifact.name,
                    version=artifact.version,
                    digest=digest,
                    path=str(target.relative_to(self.root)),
                    files=files,
                )
                dump_json(staging / METADATA_NAME, entry.to_dict())
                ensure_directory(target.parent)
                staging.rename(target)
            except BaseException:
                shutil.rmtree(staging, ignore_errors=True)
                raise
            logger.info("Published %s %s (%d file(s))", artifact.name, artifact.version, len(files))
            return entry

    def _read_metadata(self, directory: Path) -> Optional[IndexEntry]:
        metadata_path = directory / METADATA_NAME
        try:
            recorded = IndexEntry.from_dict(json.loads(metadata_path.read_text()))
        except (OSError, ValueError, KeyError) as exc:
            logger.warning("Ignoring unreadable artifact metadata %s: %s", metadata_path, exc)
            return None

        files = []
        for item in recorded.files:
            file_path = directory / item["name"]
            if not file_path.is_file():
                logger.warning("Artifact %s is missing %s", directory, item["name"])
                return None
            files.append(
                {"name": item["name"], "sha256": sha256_file(file_path), "size": file_path.stat().st_size}
            )
        recorded.files = files
        recorded.digest = combined_digest((item["name"], item["sha256"]) for item in files)
        recorded.path = str(directory.relative_to(self.root))
        return recorded

    def reindex(self) -> List[IndexEntry]:
        """Regenerate the index from the artifacts currently in the pool."""

        with self.lock:
            entries: List[IndexEntry] = []
            for metadata_path in sorted(self.pool_dir.glob(f"*/*/{METADATA_NAME}")):
                entry = self._read_metadata(metadata_path.parent)
                if entry is not None:
                    entries.append(entry)
            payload = {
                "generated_at": _dt.datetime.now(_dt.timezone.utc).isoformat(),
                "artifacts": [entry.to_dict() for entry in entries],
            }
            dump_json(self.index_path, payload)
            self._entries = entries
            logger.debug("Reindexed %s: %d artifact(s)", self.root, len(entries))
            return list(entries)

    def publish_and_reindex(self, artifact: Artifact) -> IndexEntry:
        with self.lock:
            entry = self.publish(artifact)
            self.reindex()
            return entry

    def entries(self) -> List[IndexEntry]:
        """Artifacts listed in the last regenerated index."""

        with self.lock:
            if self._entries is None:
                self._entries = self._load_index()
            return list(self._entries)

    def _load_index(self) -> List[IndexEntry]:
        if not self.index_path.exists():
            return []
        data = json.loads(self.index_path.read_text())
        return [IndexEntry.from_dict(item) for item in data.get("artifacts", [])]

    def resolve(self, name: str, version: Optional[str] = None) -> Optional[IndexEntry]:
        candidates = [entry for entry in self.entries() if entry.name == name]
        if version is not None:
            candidates = [entry for entry in candidates if entry.version == version]
        if not candidates:
            return None
        return candidates[-1]

    def contains(self, name: str, version: str) -> bool:
        return self.resolve(name, version) is not None

    def by_name(self) -> Dict[str, List[IndexEntry]]:
        grouped: Dict[str, List[IndexEntry]] = {}
        for entry in self.entries():
            grouped.setdefault(entry.name, []).append(entry)
        return grouped
