"""Character endpoints."""

from typing import Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from storyweaver.api.deps import get_stores
from storyweaver.models.storyboard import Character
from storyweaver.storage.record_store import RecordStores

router = APIRouter()


class CharacterModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    description: str = ""
    visual_traits: str = Field("", alias="visualTraits")
    images: Dict[str, str] = Field(default_factory=dict)
    created_at: Optional[int] = Field(None, alias="createdAt")


@router.get("")
async def list_characters(stores: RecordStores = Depends(get_stores)):
    characters = [Character.from_dict(r) for r in await stores.characters.get_all()]
    characters.sort(key=lambda c: c.created_at, reverse=True)
    return [c.to_dict() for c in characters]


@router.get("/{character_id}")
async def get_character(character_id: str, stores: RecordStores = Depends(get_stores)):
    record = await stores.characters.get(character_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Character not found: {character_id}")
    return Character.from_dict(record).to_dict()


@router.put("/{character_id}")
async def save_character(
    character_id: str,
    body: CharacterModel,
    stores: RecordStores = Depends(get_stores),
):
    data = body.model_dump(by_alias=True, exclude_none=True)
    data["id"] = character_id
    character = Character.from_dict(data)
    await stores.characters.put(character.to_dict())
    return character.to_dict()
