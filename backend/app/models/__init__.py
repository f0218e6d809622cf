from app.models.user import User
from app.models.entitlement import UserEntitlement
from app.models.audit_log import AuditLog
from app.models.billing import CheckoutSession, PaymentWebhookEvent
