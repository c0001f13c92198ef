# SQLModel definitions, imported here to ensure metadata is populated for Alembic.
from .base import UUIDMixin, TimestampMixin  # noqa: F401
from .user import User  # noqa: F401
from .evidence import EvidenceRecord  # noqa: F401
from .magic_link import MagicLink  # noqa: F401
from .edit_request import EditRequest  # noqa: F401
from .evidence_event import EvidenceEvent  # noqa: F401
