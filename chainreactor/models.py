"""
Pydantic models for persisted pipeline layout and profiles

JSON shape (camelCase on disk):
{
    "orderedIds": [...], "disabledIds": [...], "commandOverrides": {...},
    "manualProjects": [...], "removedIds": [...],
    "profiles": {"<name>": {"orderedIds": [...], "disabledIds": [...], "commandOverrides": {...}}}
}
"""
from typing import Dict, List, Set

from pydantic import BaseModel, ConfigDict, Field


class PipelineLayout(BaseModel):
    """Order, disabled set and command overrides for one pipeline"""
    model_config = ConfigDict(populate_by_name=True)

    ordered_ids: List[str] = Field(default_factory=list, alias="orderedIds")
    disabled_ids: Set[str] = Field(default_factory=set, alias="disabledIds")
    command_overrides: Dict[str, str] = Field(default_factory=dict, alias="commandOverrides")

    def is_enabled(self, stage_id: str) -> bool:
        return stage_id not in self.disabled_ids

    def enabled_count(self) -> int:
        return sum(1 for stage_id in self.ordered_ids if stage_id not in self.disabled_ids)


class ChainReactorState(PipelineLayout):
    """Top-level persisted state: the current layout plus named profiles"""
    manual_projects: List[str] = Field(default_factory=list, alias="manualProjects")
    removed_ids: Set[str] = Field(default_factory=set, alias="removedIds")
    profiles: Dict[str, PipelineLayout] = Field(default_factory=dict)

    def current_layout(self) -> PipelineLayout:
        return PipelineLayout(
            ordered_ids=list(self.ordered_ids),
            disabled_ids=set(self.disabled_ids),
            command_overrides=dict(self.command_overrides),
        )

    def to_json_dict(self) -> dict:
        """Serialize with camelCase keys and sorted sets for stable files"""
        data = self.model_dump(by_alias=True)
        data["disabledIds"] = sorted(data["disabledIds"])
        data["removedIds"] = sorted(data["removedIds"])
        for profile in data["profiles"].values():
            profile["disabledIds"] = sorted(profile["disabledIds"])
        return data
