"""
Per-intent entity variants.

Local extraction produces one of these named-field models; the IntentResult
carries the flattened string map so that entities coming from the remote
classifier (an open map) travel the same way.
"""

from typing import Dict, Literal, Union

from pydantic import BaseModel


class _Slots(BaseModel):
    kind: str

    def as_map(self) -> Dict[str, str]:
        """Non-empty slots as a plain map (empty values dropped)."""
        return {
            key: value
            for key, value in self.model_dump(exclude={"kind"}).items()
            if value
        }


class MediaEntities(_Slots):
    kind: Literal["media"] = "media"
    query: str = ""
    platform: str = ""


class AppEntities(_Slots):
    kind: Literal["app"] = "app"
    app: str = ""


class FileEntities(_Slots):
    kind: Literal["file"] = "file"
    target: str = ""
    action: str = ""


class SearchEntities(_Slots):
    kind: Literal["search"] = "search"
    query: str = ""


class WeatherEntities(_Slots):
    kind: Literal["weather"] = "weather"
    location: str = ""


class ControlEntities(_Slots):
    """power_control / media_control / volume_control."""

    kind: Literal["control"] = "control"
    action: str = ""


class NoEntities(_Slots):
    kind: Literal["none"] = "none"


EntitySlots = Union[
    MediaEntities,
    AppEntities,
    FileEntities,
    SearchEntities,
    WeatherEntities,
    ControlEntities,
    NoEntities,
]

# Intent tag -> variant used by local extraction
SLOTS_BY_INTENT = {
    "play_music": MediaEntities,
    "play_video": MediaEntities,
    "open_app": AppEntities,
    "close_app": AppEntities,
    "file_operation": FileEntities,
    "organize_files": FileEntities,
    "open_folder": FileEntities,
    "web_search": SearchEntities,
    "weather": WeatherEntities,
    "power_control": ControlEntities,
    "media_control": ControlEntities,
    "volume_control": ControlEntities,
}


def slots_for(intent: str, entities: Dict[str, str]) -> EntitySlots:
    """Build the named-field variant for *intent* from an entity map.

    Keys the variant does not declare are ignored.
    """
    slots_cls = SLOTS_BY_INTENT.get(intent, NoEntities)
    known = {k: v for k, v in entities.items() if k in slots_cls.model_fields and k != "kind"}
    return slots_cls(**known)
