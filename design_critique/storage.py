"""
Analysis Persistence

The pipeline only needs two calls from its store: save a finished
analysis and load it back by id. ``JsonFileStore`` keeps one JSON file
per analysis in a directory, which is all the CLI needs.
"""

import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Protocol

from pydantic import BaseModel, Field, ValidationError

from .models import Annotation, QualityControlResult, SynthesisResult

logger = logging.getLogger(__name__)

_SAFE_ID = re.compile(r"^[A-Za-z0-9_.-]+$")


class AnalysisNotFoundError(KeyError):
    """No stored analysis under the requested id"""


class StoredAnalysis(BaseModel):
    """A persisted analysis as returned by ``load_analysis_result``"""

    analysis_id: str
    final_annotations: list[Annotation] = Field(default_factory=list)
    quality_report: QualityControlResult
    synthesis: Optional[SynthesisResult] = None
    prompt: str = ""
    saved_at: str = Field(default_factory=lambda: datetime.now(tz=timezone.utc).isoformat())


class AnalysisStore(Protocol):
    def save_analysis_result(
        self,
        analysis_id: str,
        final_annotations: list[Annotation],
        quality_report: QualityControlResult,
        synthesis: Optional[SynthesisResult] = None,
        prompt: str = ""
    ) -> None:
        ...

    def load_analysis_result(self, analysis_id: str) -> StoredAnalysis:
        ...


class JsonFileStore:
    """
    One ``<analysis_id>.json`` file per analysis.

    Writes go to a temporary file first and are moved into place, so a
    reader never sees a half-written analysis.

    Example:
        store = JsonFileStore(Path("analyses"))
        store.save_analysis_result(analysis_id, annotations, quality)
        stored = store.load_analysis_result(analysis_id)
    """

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def path_for(self, analysis_id: str) -> Path:
        """
        File path for an analysis id.

        Raises:
            ValueError: If the id contains characters unsafe in a file name
        """
        if not _SAFE_ID.match(analysis_id):
            raise ValueError(f"Invalid analysis id: {analysis_id!r}")
        return self.directory / f"{analysis_id}.json"

    def save_analysis_result(
        self,
        analysis_id: str,
        final_annotations: list[Annotation],
        quality_report: QualityControlResult,
        synthesis: Optional[SynthesisResult] = None,
        prompt: str = ""
    ) -> None:
        stored = StoredAnalysis(
            analysis_id=analysis_id,
            final_annotations=final_annotations,
            quality_report=quality_report,
            synthesis=synthesis,
            prompt=prompt,
        )

        path = self.path_for(analysis_id)
        self.directory.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(".json.tmp")
        tmp_path.write_text(
            json.dumps(stored.model_dump(mode="json"), indent=2, ensure_ascii=False) + "\n",
            encoding="utf-8"
        )
        tmp_path.replace(path)
        logger.info("Saved analysis %s to %s", analysis_id, path)

    def load_analysis_result(self, analysis_id: str) -> StoredAnalysis:
        """
        Load a stored analysis.

        Raises:
            AnalysisNotFoundError: If nothing is stored under the id
            ValueError: If the stored file is corrupt
        """
        path = self.path_for(analysis_id)
        if not path.exists():
            raise AnalysisNotFoundError(analysis_id)

        try:
            return StoredAnalysis.model_validate_json(path.read_text(encoding="utf-8"))
        except ValidationError as e:
            raise ValueError(f"Stored analysis {analysis_id} is corrupt: {str(e)}") from e

    def list_analysis_ids(self) -> list[str]:
        """Stored ids, newest file first"""
        if not self.directory.exists():
            return []
        files = sorted(self.directory.glob("*.json"), key=lambda p: p.stat().st_mtime, reverse=True)
        return [p.stem for p in files]
