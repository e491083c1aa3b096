"""Building, floor and desk layout.

The layout is a small tree kept in memory per session and persisted as a
single document whose ``structure`` field holds the JSON-encoded tree.
Mutations only touch the in-memory copy and mark it dirty; callers decide
when to ``save`` it, so two admins editing at once simply overwrite each
other (last writer wins).

Removing a node never touches bookings. Bookings that point at a removed
building or floor keep their ids and are labelled as removed when read.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel, ValidationError

from .errors import InvalidRequest, NotFound, StoreError
from .models import NodeSummary
from .store import DocumentStore

logger = logging.getLogger(__name__)

LAYOUT_COLLECTION = "layout"
LAYOUT_DOCUMENT = "main"

REMOVED_BUILDING = "Removed building"
REMOVED_FLOOR = "Removed floor"

SEED_LAYOUT: Dict[str, Any] = {
    "building-a": {
        "name": "Building A",
        "floors": {
            "floor-1": {"name": "Floor 1", "desks": ["A1-01", "A1-02", "A1-03", "A1-04"]},
            "floor-2": {"name": "Floor 2", "desks": ["A2-01", "A2-02", "A2-03", "A2-04"]},
        },
    },
    "building-b": {
        "name": "Building B",
        "floors": {
            "floor-1": {"name": "Floor 1 (IT)", "desks": ["B1-01", "B1-02", "B1-03"]},
            "floor-2": {"name": "Floor 2 (HR)", "desks": ["B2-01", "B2-02"]},
        },
    },
}


class Desk(BaseModel):
    id: str
    tags: List[str] = []


class Floor(BaseModel):
    id: str
    name: str
    desks: List[Desk] = []

    def find_desk(self, desk_id: str) -> Optional[Desk]:
        for desk in self.desks:
            if desk.id == desk_id:
                return desk
        return None


class Building(BaseModel):
    id: str
    name: str
    floors: Dict[str, Floor] = {}


@dataclass(frozen=True)
class NodeRef:
    """Path to a building, a floor or a desk."""

    building_id: str
    floor_id: Optional[str] = None
    desk_id: Optional[str] = None

    def __post_init__(self) -> None:
        if self.desk_id is not None and self.floor_id is None:
            raise InvalidRequest("a desk reference needs a floor id")


def _timestamp_id(prefix: str, taken: Iterable[str]) -> str:
    existing = set(taken)
    stamp = int(time.time() * 1000)
    while f"{prefix}-{stamp}" in existing:
        stamp += 1
    return f"{prefix}-{stamp}"


def _normalize_desk(raw: Any) -> Desk:
    # Desks were originally stored as bare ids; both shapes are accepted.
    if isinstance(raw, str):
        return Desk(id=raw)
    if isinstance(raw, dict) and "id" in raw:
        return Desk(id=str(raw["id"]), tags=sorted(set(raw.get("tags") or [])))
    raise InvalidRequest(f"unrecognised desk entry: {raw!r}")


class LayoutTree:
    """Ordered buildings, each with ordered floors and desks."""

    def __init__(
        self,
        buildings: Optional[Dict[str, Building]] = None,
        id_factory: Optional[Callable[[str, Iterable[str]], str]] = None,
    ) -> None:
        self._buildings: Dict[str, Building] = dict(buildings or {})
        self._id_factory = id_factory or _timestamp_id
        self.dirty = False

    # ---------- serialisation ----------
    @classmethod
    def from_structure(cls, structure: Dict[str, Any], **kwargs: Any) -> "LayoutTree":
        buildings: Dict[str, Building] = {}
        try:
            for building_id, raw_building in structure.items():
                if not isinstance(raw_building, dict):
                    raise InvalidRequest(f"building {building_id!r} is not an object")
                floors: Dict[str, Floor] = {}
                for floor_id, raw_floor in (raw_building.get("floors") or {}).items():
                    if not isinstance(raw_floor, dict):
                        raise InvalidRequest(f"floor {floor_id!r} of {building_id!r} is not an object")
                    desks = [_normalize_desk(d) for d in raw_floor.get("desks") or []]
                    floors[floor_id] = Floor(id=floor_id, name=raw_floor.get("name", floor_id), desks=desks)
                buildings[building_id] = Building(
                    id=building_id, name=raw_building.get("name", building_id), floors=floors
                )
        except (AttributeError, TypeError, ValidationError) as exc:
            raise InvalidRequest(f"malformed layout structure: {exc}") from exc
        return cls(buildings, **kwargs)

    @classmethod
    def from_json(cls, text: str, **kwargs: Any) -> "LayoutTree":
        try:
            structure = json.loads(text)
        except (TypeError, ValueError) as exc:
            raise InvalidRequest(f"layout is not valid JSON: {exc}") from exc
        if not isinstance(structure, dict):
            raise InvalidRequest("layout must be a JSON object keyed by building id")
        return cls.from_structure(structure, **kwargs)

    @classmethod
    def seed(cls, **kwargs: Any) -> "LayoutTree":
        return cls.from_structure(SEED_LAYOUT, **kwargs)

    def to_structure(self) -> Dict[str, Any]:
        structure: Dict[str, Any] = {}
        for building in self._buildings.values():
            floors: Dict[str, Any] = {}
            for floor in building.floors.values():
                floors[floor.id] = {
                    "name": floor.name,
                    "desks": [{"id": d.id, "tags": list(d.tags)} if d.tags else d.id for d in floor.desks],
                }
            structure[building.id] = {"name": building.name, "floors": floors}
        return structure

    def to_json(self) -> str:
        return json.dumps(self.to_structure(), ensure_ascii=False)

    # ---------- lookups ----------
    def _building(self, building_id: str) -> Building:
        building = self._buildings.get(building_id)
        if building is None:
            raise NotFound(f"building {building_id!r} does not exist")
        return building

    def _floor(self, building_id: str, floor_id: str) -> Floor:
        floor = self._building(building_id).floors.get(floor_id)
        if floor is None:
            raise NotFound(f"floor {floor_id!r} does not exist in building {building_id!r}")
        return floor

    def _desk(self, building_id: str, floor_id: str, desk_id: str) -> Desk:
        desk = self._floor(building_id, floor_id).find_desk(desk_id)
        if desk is None:
            raise NotFound(f"desk {desk_id!r} does not exist on floor {floor_id!r}")
        return desk

    def list_buildings(self) -> List[NodeSummary]:
        return [NodeSummary(id=b.id, name=b.name) for b in self._buildings.values()]

    def list_floors(self, building_id: str) -> List[NodeSummary]:
        return [NodeSummary(id=f.id, name=f.name) for f in self._building(building_id).floors.values()]

    def list_desks(self, building_id: str, floor_id: str) -> List[Desk]:
        return list(self._floor(building_id, floor_id).desks)

    def has_desk(self, building_id: str, floor_id: str, desk_id: str) -> bool:
        try:
            self._desk(building_id, floor_id, desk_id)
        except NotFound:
            return False
        return True

    def all_desks(self) -> List[Tuple[str, str, Desk]]:
        return [
            (building.id, floor.id, desk)
            for building in self._buildings.values()
            for floor in building.floors.values()
            for desk in floor.desks
        ]

    def location_labels(self, building_id: str, floor_id: str) -> Tuple[str, str]:
        """Display names for a booking's location, with fallbacks for removed nodes."""
        building = self._buildings.get(building_id)
        if building is None:
            return REMOVED_BUILDING, REMOVED_FLOOR
        floor = building.floors.get(floor_id)
        return building.name, floor.name if floor is not None else REMOVED_FLOOR

    def building_name(self, building_id: str) -> str:
        building = self._buildings.get(building_id)
        return building.name if building is not None else REMOVED_BUILDING

    # ---------- mutations ----------
    def add_building(self, name: str) -> str:
        name = name.strip()
        if not name:
            raise InvalidRequest("building name must not be empty")
        building_id = self._id_factory("building", self._buildings)
        self._buildings[building_id] = Building(id=building_id, name=name)
        self.dirty = True
        return building_id

    def add_floor(self, building_id: str, name: str) -> str:
        name = name.strip()
        if not name:
            raise InvalidRequest("floor name must not be empty")
        building = self._building(building_id)
        floor_id = self._id_factory("floor", building.floors)
        building.floors[floor_id] = Floor(id=floor_id, name=name)
        self.dirty = True
        return floor_id

    def add_desks(
        self,
        building_id: str,
        floor_id: str,
        prefix: str,
        count: int,
        start_index: int = 1,
        tags: Iterable[str] = (),
    ) -> List[str]:
        """Bulk-create ``count`` desks named ``"{prefix} {n}"`` starting at ``start_index``."""
        if count < 1:
            raise InvalidRequest("count must be at least 1")
        floor = self._floor(building_id, floor_id)
        new_ids = [f"{prefix} {start_index + i}".strip() for i in range(count)]
        taken = {d.id for d in floor.desks}
        clashes = [desk_id for desk_id in new_ids if desk_id in taken]
        if clashes:
            raise InvalidRequest(f"desk ids already exist on this floor: {', '.join(clashes)}")
        tag_list = sorted(set(tags))
        floor.desks.extend(Desk(id=desk_id, tags=tag_list) for desk_id in new_ids)
        self.dirty = True
        return new_ids

    def rename(self, ref: NodeRef, new_name: str) -> None:
        new_name = new_name.strip()
        if not new_name:
            raise InvalidRequest("name must not be empty")
        if ref.desk_id is not None:
            floor = self._floor(ref.building_id, ref.floor_id)
            desk = self._desk(ref.building_id, ref.floor_id, ref.desk_id)
            if new_name != desk.id and floor.find_desk(new_name) is not None:
                raise InvalidRequest(f"desk {new_name!r} already exists on this floor")
            desk.id = new_name
        elif ref.floor_id is not None:
            self._floor(ref.building_id, ref.floor_id).name = new_name
        else:
            self._building(ref.building_id).name = new_name
        self.dirty = True

    def remove(self, ref: NodeRef) -> None:
        """Remove a node and everything below it."""
        if ref.desk_id is not None:
            floor = self._floor(ref.building_id, ref.floor_id)
            desk = self._desk(ref.building_id, ref.floor_id, ref.desk_id)
            floor.desks.remove(desk)
        elif ref.floor_id is not None:
            self._floor(ref.building_id, ref.floor_id)
            del self._buildings[ref.building_id].floors[ref.floor_id]
        else:
            self._building(ref.building_id)
            del self._buildings[ref.building_id]
        self.dirty = True

    def set_desk_tags(self, ref: NodeRef, tags: Iterable[str]) -> None:
        if ref.desk_id is None:
            raise InvalidRequest("tags can only be set on a desk")
        self._desk(ref.building_id, ref.floor_id, ref.desk_id).tags = sorted(set(tags))
        self.dirty = True


class LayoutRepository:
    """Loads and saves the layout document."""

    def __init__(self, documents: DocumentStore) -> None:
        self._documents = documents

    async def load(self) -> LayoutTree:
        """Return the stored layout, writing the seed layout if none exists.

        A store failure or an unreadable stored structure falls back to the
        seed layout in memory so a session can still browse; the failure is
        logged.
        """
        try:
            data = await self._documents.get(LAYOUT_COLLECTION, LAYOUT_DOCUMENT)
        except StoreError as exc:
            logger.exception("Error fetching layout, using seed layout: %s", exc)
            return LayoutTree.seed()
        if data is None or not data.get("structure"):
            tree = LayoutTree.seed()
            try:
                await self.save(tree)
            except StoreError as exc:
                logger.exception("Error writing seed layout: %s", exc)
            return tree
        try:
            return LayoutTree.from_json(data["structure"])
        except InvalidRequest as exc:
            # Left in place; the next admin save replaces it.
            logger.error("Stored layout is unreadable, using seed layout: %s", exc)
            return LayoutTree.seed()

    async def save(self, tree: LayoutTree) -> None:
        await self._documents.set(LAYOUT_COLLECTION, LAYOUT_DOCUMENT, {"structure": tree.to_json()})
        tree.dirty = False
        logger.info("Layout saved (%d buildings)", len(tree.list_buildings()))
