"""Container / mid-level / leaf hierarchies served by the access engine.

Every product module (metaverses, resources, organizations, campaigns) uses
the same three-level shape with different entity names. One ``Hierarchy``
describes a module; all services take it as a parameter instead of being
copied per module.
"""

from __future__ import annotations

from dataclasses import dataclass

from universo.constants import EntityLevel
from universo.exceptions import NotFoundError


@dataclass(frozen=True)
class Hierarchy:
    slug: str
    container: str
    mid_level: str
    leaf: str
    has_composition: bool = False

    def kind_for(self, level: EntityLevel) -> str:
        if level == EntityLevel.CONTAINER:
            return self.container
        if level == EntityLevel.MID_LEVEL:
            return self.mid_level
        return self.leaf

    def level_of(self, kind: str) -> EntityLevel:
        for level in EntityLevel:
            if self.kind_for(level) == kind:
                return level
        raise ValueError(f"Kind '{kind}' does not belong to hierarchy '{self.slug}'")

    @property
    def kinds(self) -> tuple[str, str, str]:
        return (self.container, self.mid_level, self.leaf)


METAVERSES = Hierarchy(slug="metaverses", container="metaverse", mid_level="section", leaf="entity")
RESOURCES = Hierarchy(
    slug="resources",
    container="cluster",
    mid_level="domain",
    leaf="resource",
    has_composition=True,
)
ORGANIZATIONS = Hierarchy(
    slug="organizations",
    container="organization",
    mid_level="department",
    leaf="position",
)
CAMPAIGNS = Hierarchy(slug="campaigns", container="campaign", mid_level="event", leaf="activity")

HIERARCHIES: dict[str, Hierarchy] = {h.slug: h for h in (METAVERSES, RESOURCES, ORGANIZATIONS, CAMPAIGNS)}


def get_hierarchy(slug: str) -> Hierarchy:
    hierarchy = HIERARCHIES.get(slug)
    if hierarchy is None:
        raise NotFoundError(f"Unknown module '{slug}'")
    return hierarchy
