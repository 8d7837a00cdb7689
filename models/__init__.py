from .db import db
from .user import User, Role, user_roles
from .auth_token import AuthToken
from .audit_log import AuditLog
from .app_setting import AppSetting
from .session import Session
from .subscription import Subscription
from .booking import Booking
from .ticket_transaction import TicketTransaction, BonusTicket
from .payment import Payment
