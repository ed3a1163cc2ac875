"""Request models for the LineageWeaver API.

Field names are camelCase to match stored documents and import files.
Unknown fields are kept so worldbuilding extras round-trip.
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict


class Document(BaseModel):
    """Base model for documents that may carry extra fields."""
    model_config = ConfigDict(extra="allow")


# Genealogy

class HouseCreate(Document):
    houseName: str
    houseType: Literal["main", "cadet"] = "main"
    parentHouseId: int | None = None
    foundedBy: int | None = None
    swornTo: int | None = None
    colorCode: str | None = None
    motto: str | None = None
    notes: str | None = None


class HouseUpdate(Document):
    houseName: str | None = None
    houseType: Literal["main", "cadet"] | None = None


class PersonCreate(Document):
    firstName: str
    lastName: str
    gender: Literal["male", "female", "other"]
    houseId: int | None = None
    maidenName: str | None = None
    legitimacyStatus: Literal["legitimate", "bastard", "adopted", "unknown"] = "legitimate"
    bastardStatus: str | None = None
    dateOfBirth: str | None = None
    dateOfDeath: str | None = None
    epithets: list[Any] = []


class PersonUpdate(Document):
    gender: Literal["male", "female", "other"] | None = None
    legitimacyStatus: Literal["legitimate", "bastard", "adopted", "unknown"] | None = None


class RelationshipCreate(Document):
    person1Id: int
    person2Id: int
    relationshipType: Literal["parent", "parent-child", "spouse", "adopted-parent", "foster-parent", "mentor", "named-after"]
    marriageDate: str | None = None
    divorceDate: str | None = None
    marriageStatus: str | None = None
    biologicalParent: bool | None = None


class RelationshipUpdate(Document):
    pass


class CeremonyRequest(BaseModel):
    """Found a cadet house."""
    founderId: int
    parentHouseId: int
    houseName: str
    ceremonyDate: str | None = None
    motto: str | None = None
    colorCode: str | None = None
    cadetTier: int | None = None
    foundingType: str | None = None


class DuplicatePair(BaseModel):
    person1Id: int
    person2Id: int


# Codex

class CodexEntryCreate(Document):
    type: str
    title: str
    content: str = ""
    subtitle: str | None = None
    sections: list[Any] = []
    category: str | None = None
    tags: list[str] = []
    era: str | None = None
    personId: int | None = None
    houseId: int | None = None


class CodexEntryUpdate(Document):
    pass


class CodexLinkCreate(BaseModel):
    targetId: int
    type: str = "reference"
    label: str | None = None
    bidirectional: bool = True


class Enhancement(Document):
    targetTitle: str


# Dignities

class DignityCreate(Document):
    name: str
    dignityClass: Literal["driht", "ward", "sir", "crown", "other"] = "driht"
    dignityRank: str | None = None
    dignityNature: Literal["territorial", "office", "personal-honour", "courtesy"] = "territorial"


class DignityUpdate(Document):
    dignityNature: Literal["territorial", "office", "personal-honour", "courtesy"] | None = None


class TenureCreate(Document):
    personId: int
    dateStarted: str | None = None
    dateEnded: str | None = None
    acquisitionType: str = "inheritance"


class TenureUpdate(Document):
    pass


class DignityLinkCreate(Document):
    entityType: str
    entityId: int
    linkType: str = "primary"


# Heraldry

class HeraldryCreate(Document):
    name: str | None = None
    blazon: str | None = None
    category: str = "noble"
    tags: list[str] = []


class HeraldryUpdate(Document):
    pass


class HeraldryLinkCreate(BaseModel):
    entityType: Literal["house", "person", "location", "event"]
    entityId: int
    linkType: Literal["primary", "quartered", "impaled", "banner", "seal"] = "primary"
    since: str | None = None
    until: str | None = None


class PersonalArmsRequest(BaseModel):
    houseHeraldryId: int
    birthPosition: int
    name: str | None = None


# Datasets, preferences and features

class DatasetCreate(BaseModel):
    name: str
    id: str | None = None


class DatasetUpdate(BaseModel):
    name: str


class ActiveDatasetRequest(BaseModel):
    datasetId: str


class FeatureToggle(BaseModel):
    path: str
    enabled: bool
