"""
Storyboard, scene and character documents.

These are owned by the studio; the production pipeline reads them, fills in
media fields and writes them back.
"""

import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from storyweaver.core.constants import (
    AspectRatio,
    CHARACTER_IMAGE_ANGLES,
    DEFAULT_STYLE,
)
from storyweaver.models.task import now_ms

# Stored character records use camelCase angle keys
_CHARACTER_IMAGE_KEYS = {"threeQuarter": "three_quarter"}


@dataclass
class Scene:
    """One entry in a storyboard's ordered sequence."""
    description: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    character_ids: List[str] = field(default_factory=list)
    dialogue: Optional[str] = None
    frame_image: Optional[str] = None
    audio_clip: Optional[str] = None
    video_clip: Optional[str] = None

    @property
    def has_dialogue(self) -> bool:
        return bool(self.dialogue and self.dialogue.strip())

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "description": self.description,
            "characterIds": list(self.character_ids),
        }
        optional = {
            "dialogue": self.dialogue,
            "frameImage": self.frame_image,
            "audioClip": self.audio_clip,
            "videoClip": self.video_clip,
        }
        data.update({key: value for key, value in optional.items() if value is not None})
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Scene':
        return cls(
            id=data.get("id") or str(uuid.uuid4()),
            description=data.get("description", ""),
            character_ids=list(data.get("characterIds", [])),
            dialogue=data.get("dialogue"),
            frame_image=data.get("frameImage"),
            audio_clip=data.get("audioClip"),
            video_clip=data.get("videoClip"),
        )


@dataclass
class Storyboard:
    """An ordered sequence of scenes plus the story-wide character roster."""
    id: str
    title: str
    scenes: List[Scene] = field(default_factory=list)
    script: str = ""
    characters: List[str] = field(default_factory=list)
    aspect_ratio: str = AspectRatio.LANDSCAPE.value
    style: str = DEFAULT_STYLE
    created_at: int = field(default_factory=now_ms)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "script": self.script,
            "characters": list(self.characters),
            "scenes": [scene.to_dict() for scene in self.scenes],
            "aspectRatio": self.aspect_ratio,
            "style": self.style,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Storyboard':
        return cls(
            id=data["id"],
            title=data.get("title", ""),
            script=data.get("script", ""),
            characters=list(data.get("characters", [])),
            scenes=[Scene.from_dict(s) for s in data.get("scenes", [])],
            aspect_ratio=data.get("aspectRatio") or AspectRatio.LANDSCAPE.value,
            style=data.get("style") or DEFAULT_STYLE,
            created_at=int(data.get("createdAt") or now_ms()),
        )


@dataclass
class Character:
    """A designed character with its reference images."""
    id: str
    name: str
    description: str = ""
    visual_traits: str = ""
    images: Dict[str, str] = field(default_factory=dict)
    created_at: int = field(default_factory=now_ms)

    @property
    def dna(self) -> str:
        """One line of durable visual traits for the image collaborator."""
        return f"{self.name}: {self.visual_traits or self.description}"

    def reference_image(self) -> Optional[str]:
        """First available image in preferred angle order."""
        for angle in CHARACTER_IMAGE_ANGLES:
            image = self.images.get(angle)
            if image:
                return image
        for image in self.images.values():
            if image:
                return image
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "visualTraits": self.visual_traits,
            "images": dict(self.images),
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Character':
        images = {
            _CHARACTER_IMAGE_KEYS.get(angle, angle): image
            for angle, image in (data.get("images") or {}).items()
        }
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            description=data.get("description", ""),
            visual_traits=data.get("visualTraits", ""),
            images=images,
            created_at=int(data.get("createdAt") or now_ms()),
        )
