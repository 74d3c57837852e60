from phoneauth.models.user import User, UserDevice
from phoneauth.models.auth_session import AuthSession
from phoneauth.models.audit_log import AuditLog
