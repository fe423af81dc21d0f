from app.models.user import User  # noqa: F401
from app.models.organization import Department, Specialization, Employee  # noqa: F401
from app.models.client import ClientCategory, Client, ClientHistory  # noqa: F401
from app.models.task import TaskCategory, Task, TaskComment, TaskHistory  # noqa: F401
from app.models.payment import Payment  # noqa: F401
from app.models.notification import Notification  # noqa: F401
from app.models.audit import SystemLog  # noqa: F401
