# Models package: import all models here so Alembic can discover them.

from taskgrid.models.user import User  # noqa: F401
from taskgrid.models.workspace import Workspace, WorkspaceMember  # noqa: F401
from taskgrid.models.section import Section  # noqa: F401
from taskgrid.models.task import Task  # noqa: F401
from taskgrid.models.search_index import SearchPosting  # noqa: F401
from taskgrid.models.event import Event  # noqa: F401
from taskgrid.models.activity import (  # noqa: F401
    EventCategoryStats,
    UserActivitySummary,
)

# Search vector hooks must be attached once the entity mappers exist.
from taskgrid.search import vector as _vector  # noqa: E402

_vector.register_listeners()
