# SQLModel definitions, imported here to ensure metadata is populated for create_all.
from .base import IdentityMixin, TimestampMixin  # noqa: F401
from .user import User  # noqa: F401
from .area import Area  # noqa: F401
from .area_member import AreaMember  # noqa: F401
from .area_subscriber import AreaSubscriber  # noqa: F401
from .project import Project  # noqa: F401
from .task import Task  # noqa: F401
from .task_subscriber import TaskSubscriber  # noqa: F401
from .note import Note  # noqa: F401
from .action import Action  # noqa: F401
from .permission import Permission  # noqa: F401
