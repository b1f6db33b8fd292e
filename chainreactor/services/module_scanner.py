"""
ModuleScanner - Discovers build units under a project root

Single Responsibility: Turn directories containing the build script into StageSpecs
"""

import os
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from chainreactor.pipeline.state import StageSpec


# Directories never descended into, besides hidden ones
SKIP_DIRS = {"node_modules", "__pycache__", "venv"}


def stage_id_for(directory) -> str:
    """
    Stable, collision-free stage id: the canonical absolute path of the
    stage's working directory.
    """
    return str(Path(directory).expanduser().resolve())


class ModuleScanner:
    """
    Scans a project tree for a build script (default `all_build.sh`).

    Every directory containing the script becomes one stage; manually added
    project directories are merged in, removed ids are filtered out.
    """

    def __init__(
        self,
        script_name: str = "all_build.sh",
        timeout_seconds: Optional[float] = 300,
        logger: Optional[logging.Logger] = None
    ):
        self.script_name = script_name
        self.timeout_seconds = timeout_seconds
        self.logger = logger or logging.getLogger(__name__)

    def scan(
        self,
        root: Path,
        manual_projects: Iterable[str] = (),
        removed_ids: Iterable[str] = ()
    ) -> List[StageSpec]:
        """
        Scan `root` for build units.

        Args:
            root: Directory to scan recursively
            manual_projects: Extra project directories to include
            removed_ids: Stage ids hidden from the result

        Returns:
            Stages sorted by display name
        """
        root = Path(root)
        removed = set(removed_ids)
        found: Dict[str, StageSpec] = {}

        self.logger.info(f"Scanning {root} for '{self.script_name}'...")
        if not root.is_dir():
            self.logger.warning(f"Directory does not exist: {root}")
        else:
            for script in self._find_scripts(root):
                stage = self.from_script(script)
                found.setdefault(stage.id, stage)
                self.logger.debug(f"  Found module: {stage.display_name} -> {stage.command}")

        for directory in manual_projects:
            stage = self.from_directory(directory)
            found.setdefault(stage.id, stage)

        stages = [stage for stage_id, stage in found.items() if stage_id not in removed]
        stages.sort(key=lambda s: (s.display_name.lower(), s.id))
        self.logger.info(f"Scan complete: {len(stages)} module(s)")
        return stages

    def from_script(self, script_path) -> StageSpec:
        """Stage for a discovered script: runs the script by absolute path"""
        script = Path(script_path).expanduser().resolve()
        directory = script.parent
        return StageSpec(
            id=stage_id_for(directory),
            display_name=directory.name or str(directory),
            working_directory=str(directory),
            command=str(script),
            timeout_seconds=self.timeout_seconds
        )

    def from_directory(self, directory) -> StageSpec:
        """Stage for a manually added project directory"""
        path = Path(directory).expanduser().resolve()
        return StageSpec(
            id=stage_id_for(path),
            display_name=path.name or str(path),
            working_directory=str(path),
            command=f"./{self.script_name}",
            timeout_seconds=self.timeout_seconds
        )

    def _find_scripts(self, root: Path) -> List[Path]:
        scripts = []

        def on_error(error: OSError):
            self.logger.warning(f"Skipping unreadable directory: {error}")

        for dirpath, dirnames, filenames in os.walk(root, onerror=on_error):
            dirnames[:] = sorted(
                d for d in dirnames
                if not d.startswith(".") and d not in SKIP_DIRS
            )
            if self.script_name in filenames:
                scripts.append(Path(dirpath) / self.script_name)
        return scripts
