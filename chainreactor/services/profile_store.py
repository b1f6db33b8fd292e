"""
ProfileStore - Persisted stage order, enabled flags, command overrides and profiles

Single Responsibility: Load/save ChainReactorState as JSON
State lives on disk; every mutation is written back atomically.
"""

import json
import logging
import threading
from pathlib import Path
from typing import Callable, List, Optional

from pydantic import ValidationError

from chainreactor.models import ChainReactorState, PipelineLayout


class ProfileStore:
    """Thread-safe, file-backed store for the current layout and named profiles"""

    def __init__(self, state_file: Path, logger: Optional[logging.Logger] = None):
        self.state_file = Path(state_file)
        self.logger = logger or logging.getLogger(__name__)
        self._lock = threading.RLock()
        self._state = ChainReactorState()
        self._load_state()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load_state(self) -> None:
        """Load state from disk; a missing or broken file yields defaults"""
        if not self.state_file.exists():
            self.logger.info(f"No persisted state at {self.state_file}")
            return
        try:
            with open(self.state_file, "r", encoding="utf-8") as f:
                data = json.load(f)
            self._state = ChainReactorState.model_validate(data or {})
            self.logger.info(
                f"Loaded persisted state: {len(self._state.ordered_ids)} ordered stage(s), "
                f"{len(self._state.profiles)} profile(s)"
            )
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            self.logger.warning(f"Failed to load persisted state from {self.state_file}: {e}")
            self._state = ChainReactorState()

    def _save_state(self) -> None:
        """Atomic write: temp file + rename"""
        self.state_file.parent.mkdir(parents=True, exist_ok=True)
        temp_file = self.state_file.with_suffix(".tmp")
        with open(temp_file, "w", encoding="utf-8") as f:
            json.dump(self._state.to_json_dict(), f, indent=2)
        temp_file.replace(self.state_file)

    # ------------------------------------------------------------------
    # Current layout
    # ------------------------------------------------------------------

    def current_layout(self) -> PipelineLayout:
        with self._lock:
            return self._state.current_layout()

    def get_order(self) -> List[str]:
        with self._lock:
            return list(self._state.ordered_ids)

    def set_order(self, ordered_ids: List[str]) -> None:
        with self._lock:
            self._state.ordered_ids = list(dict.fromkeys(ordered_ids))
            self._save_state()

    def is_enabled(self, stage_id: str) -> bool:
        with self._lock:
            return stage_id not in self._state.disabled_ids

    def set_enabled(self, stage_id: str, enabled: bool) -> None:
        with self._lock:
            if enabled:
                self._state.disabled_ids.discard(stage_id)
            else:
                self._state.disabled_ids.add(stage_id)
            self._save_state()

    def get_command(self, stage_id: str) -> Optional[str]:
        with self._lock:
            return self._state.command_overrides.get(stage_id)

    def set_command(self, stage_id: str, command: Optional[str]) -> None:
        """Set a command override; a blank command resets to the default script"""
        with self._lock:
            if command is None or not command.strip():
                self._state.command_overrides.pop(stage_id, None)
            else:
                self._state.command_overrides[stage_id] = command.strip()
            self._save_state()

    # ------------------------------------------------------------------
    # Manually added / removed projects
    # ------------------------------------------------------------------

    def manual_projects(self) -> List[str]:
        with self._lock:
            return list(self._state.manual_projects)

    def removed_ids(self) -> set:
        with self._lock:
            return set(self._state.removed_ids)

    def add_manual_project(self, directory: str, stage_id: Optional[str] = None) -> None:
        """Add a project directory to the working list (un-removing it if needed)"""
        with self._lock:
            if directory not in self._state.manual_projects:
                self._state.manual_projects.append(directory)
            if stage_id is not None:
                self._state.removed_ids.discard(stage_id)
            self._save_state()

    def remove_project(self, stage_id: str, directory: Optional[str] = None) -> None:
        """Hide a stage from the working list; files on disk are untouched"""
        with self._lock:
            self._state.removed_ids.add(stage_id)
            if directory is not None and directory in self._state.manual_projects:
                self._state.manual_projects.remove(directory)
            self._state.ordered_ids = [i for i in self._state.ordered_ids if i != stage_id]
            self._save_state()

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    def profile_names(self) -> List[str]:
        with self._lock:
            return sorted(self._state.profiles)

    def get_profile(self, name: str) -> Optional[PipelineLayout]:
        with self._lock:
            profile = self._state.profiles.get(name)
            return profile.model_copy(deep=True) if profile is not None else None

    def upsert_profile(self, name: str, layout: PipelineLayout, original_name: Optional[str] = None) -> None:
        """
        Create or replace a profile, optionally renaming it.

        Raises:
            ValueError: If the name is blank or already used by another profile
        """
        name = (name or "").strip()
        if not name:
            raise ValueError("Profile name must not be blank")
        with self._lock:
            if name != original_name and name in self._state.profiles:
                raise ValueError(f"Profile '{name}' already exists")
            if original_name is not None and original_name != name:
                self._state.profiles.pop(original_name, None)
            self._state.profiles[name] = layout.model_copy(deep=True)
            self._save_state()
        self.logger.info(f"Saved profile {name!r} ({len(layout.ordered_ids)} stage(s))")

    def edit_profile(self, name: str, edit: Callable[[PipelineLayout], None]) -> Optional[PipelineLayout]:
        """
        Apply `edit` to a copy of a profile's layout and save it.
        If `edit` raises, the stored profile is left unchanged.

        Returns:
            The edited layout (a copy), or None if no such profile exists
        """
        with self._lock:
            profile = self._state.profiles.get(name)
            if profile is None:
                return None
            layout = profile.model_copy(deep=True)
            edit(layout)
            self._state.profiles[name] = layout
            self._save_state()
            return layout.model_copy(deep=True)

    def delete_profile(self, name: str) -> bool:
        with self._lock:
            if self._state.profiles.pop(name, None) is None:
                return False
            self._save_state()
        self.logger.info(f"Deleted profile {name!r}")
        return True
