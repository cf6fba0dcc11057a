# @TASK P5-T5.0 - API package

"""REST API package.

Every hierarchy gets the same set of routes from
:func:`create_hierarchy_router`, mounted under ``/api/{slug}``:

- containers: container CRUD and container links
- members: container membership listing and writes
- entities: mid-level and leaf CRUD and leaf links
- composition: leaf composition trees (composition-enabled hierarchies)
- publications: publishing a container's project
"""

from fastapi import APIRouter

from universo.hierarchies import Hierarchy


def create_hierarchy_router(hierarchy: Hierarchy) -> APIRouter:
    """Build the router for one hierarchy, prefixed with ``/{slug}``."""
    from universo.api import composition, containers, entities, members, publications

    router = APIRouter(prefix=f"/{hierarchy.slug}", tags=[hierarchy.slug])
    router.include_router(containers.build_router(hierarchy))
    router.include_router(members.build_router(hierarchy))
    router.include_router(entities.build_router(hierarchy))
    router.include_router(composition.build_router(hierarchy))
    router.include_router(publications.build_router(hierarchy))
    return router
