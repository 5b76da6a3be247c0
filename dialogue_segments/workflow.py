"""
Dialogue segmentation toolchain (scenes → segments)

File-first wrapper around the segmenter for offline runs and debugging of
stored scenes. A workspace holds the orchestrator's scene artifacts and the
stage output:

scenes/*.json → segments/*-segments.json

Each command validates its preconditions, reads and writes typed artifacts
(Pydantic v2 models) and fails fast: integrity errors propagate instead of
producing partial segment files. Rerun ``batch`` with ``--force`` to replace
an existing ``segments/`` directory.
"""

from __future__ import annotations

import os
import shutil
import sys
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

import fire
from loguru import logger

from dialogue_segments.config import DedupMode, SegmentationConfig
from dialogue_segments.models import SceneArtifact, SegmentedScene
from dialogue_segments.segmenter import segment_scene, validate_dialogue_map

WORKSPACE_DIR = Path(os.environ.get("WORKSPACE_DIR", "/data/workspace"))


class Segmenter:
    """Scene segmentation exposed as CLI commands."""

    def __init__(
        self,
        debug: bool = False,
        workspace_dir: Path | str = WORKSPACE_DIR / "segments",
        force: bool = False,
        dedup_mode: Optional[str] = None,
        failure_threshold: Optional[float] = None,
        strict: bool = False,
    ) -> None:
        self.debug = debug
        self.force = force
        self.workspace_dir = Path(workspace_dir)
        logger.remove()
        logger.add(sys.stderr, level="DEBUG" if debug else "INFO")

        overrides: Dict[str, object] = {}
        if dedup_mode is not None:
            overrides["dedup_mode"] = DedupMode(str(dedup_mode).lower())
        if failure_threshold is not None:
            overrides["failure_threshold"] = float(failure_threshold)
        if strict:
            overrides["synthetic_fallback"] = False
        self.config = SegmentationConfig(
            **{**SegmentationConfig.from_env().model_dump(), **overrides}
        )

    # —————————————————— Utilities ——————————————————

    def _prepare_output_dir(self, path: Path, stage: str) -> None:
        """Ensure an output directory is writable, honoring the `--force` policy."""
        if path.exists():
            if not self.force:
                raise FileExistsError(
                    f"Stage {stage} refuses to overwrite existing directory: {path}"
                )
            logger.warning(
                "Overwriting existing directory for stage {stage}: {path}",
                stage=stage,
                path=path,
            )
            shutil.rmtree(path)
        path.mkdir(parents=True, exist_ok=True)

    def _resolve_workspace(self, work_dir: Path | str) -> Path:
        """Resolve a workspace path, accepting relative names under `workspace_dir`."""
        work_path = Path(work_dir)
        if not work_path.is_absolute():
            work_path = self.workspace_dir / work_path
        if not work_path.exists():
            raise FileNotFoundError(f"Workspace {work_path} does not exist.")
        return work_path

    @staticmethod
    def _load_scene(scene_path: Path | str) -> SceneArtifact:
        path = Path(scene_path)
        if not path.exists():
            raise FileNotFoundError(f"Scene file {path} does not exist.")
        return SceneArtifact.model_validate_json(path.read_text())

    def _segment_one(self, scene: SceneArtifact) -> SegmentedScene:
        logger.info(
            "segment.scene scene_id={scene_id} prose_chars={chars} spans={spans}",
            scene_id=scene.scene_id,
            chars=len(scene.prose),
            spans=len(scene.dialogue_map or []),
        )
        result = segment_scene(scene.prose, scene.dialogue_map, self.config)
        return SegmentedScene(
            scene_id=scene.scene_id, segments=result.segments, report=result.report
        )

    # —————————————————— Commands ——————————————————

    def segment(self, scene_path: Path | str, out_path: Optional[Path | str] = None) -> Path:
        """Segment one scene artifact; writes `<stem>-segments.json` beside it by default."""
        scene_path = Path(scene_path)
        scene = self._load_scene(scene_path)
        target = (
            Path(out_path)
            if out_path is not None
            else scene_path.with_name(f"{scene_path.stem}-segments.json")
        )
        if target.exists() and not self.force:
            raise FileExistsError(f"Refusing to overwrite existing file: {target}")

        segmented = self._segment_one(scene)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(segmented.model_dump_json(indent=2))
        logger.info(
            "segment.done scene_id={scene_id} segments={count} path={path}",
            scene_id=scene.scene_id,
            count=len(segmented.segments),
            path=target,
        )
        return target

    def batch(self, work_dir: Path | str) -> List[Path]:
        """Stage — produce segments/*-segments.json from scenes/*.json."""
        workspace = self._resolve_workspace(work_dir)
        scenes_dir = workspace / "scenes"
        if not scenes_dir.exists():
            raise FileNotFoundError(f"Scenes directory missing: {scenes_dir}")
        scene_paths = sorted(scenes_dir.glob("*.json"))
        if not scene_paths:
            raise ValueError(f"No scene artifacts found in {scenes_dir}.")

        logger.info("batch.start work_dir={work_dir}", work_dir=workspace)
        segments_dir = workspace / "segments"
        self._prepare_output_dir(segments_dir, stage="segments")

        written: List[Path] = []
        warnings = 0
        for scene_path in scene_paths:
            segmented = self._segment_one(self._load_scene(scene_path))
            target = segments_dir / f"{scene_path.stem}-segments.json"
            target.write_text(segmented.model_dump_json(indent=2))
            warnings += len(segmented.report.warnings)
            written.append(target)

        logger.info(
            "batch.done work_dir={work_dir} scenes={count} warnings={warnings}",
            work_dir=workspace,
            count=len(written),
            warnings=warnings,
        )
        return written

    def validate(
        self,
        scene_path: Path | str,
        speakers: Optional[Union[str, Sequence[str]]] = None,
    ) -> dict:
        """Pre-flight a scene's dialogue map against `speakers` (or the scene's own list)."""
        scene = self._load_scene(scene_path)
        if speakers is None:
            known = scene.speakers
        elif isinstance(speakers, str):
            known = [name.strip() for name in speakers.split(",") if name.strip()]
        else:
            known = [str(name) for name in speakers]
        result = validate_dialogue_map(scene.dialogue_map, known)
        logger.info(
            "validate.done scene_id={scene_id} valid={valid} errors={errors}",
            scene_id=scene.scene_id,
            valid=result.valid,
            errors=len(result.errors),
        )
        return result.model_dump()


def main() -> None:
    fire.Fire(Segmenter)


if __name__ == "__main__":
    main()
