# Import every table so Base.metadata is complete before create_all().
from medportal.models.user import AuthSession, AuthUser, Hospital, Patient, RoleEnum  # noqa: F401
from medportal.models.access_control import AccessPermission, AccessStatus  # noqa: F401
from medportal.models.record import PatientRecord, RecordType  # noqa: F401
from medportal.models.access_log import AccessLog, AccessType  # noqa: F401
