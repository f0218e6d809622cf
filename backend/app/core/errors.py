"""Exception types raised by the service layer.

Routes translate these into HTTP responses:

- ``ValidationError``: malformed input (unknown tier, missing fields). 400.
- ``PaymentIntegrityError``: a payment event that does not add up (amount or
  session mismatch). 400, logged on the security logger.
- ``DependencyError``: an external collaborator (payment processor, video
  platform, email service) is unreachable or not configured. 502/503.

Eligibility and access denials are not errors: they come back as decisions
with a reason. Database failures are left as SQLAlchemy exceptions and always
propagate.
"""


class ValidationError(ValueError):
    pass


class PaymentIntegrityError(Exception):
    pass


class DependencyError(Exception):
    def __init__(self, service: str, message: str):
        super().__init__(f"{service}: {message}")
        self.service = service
        self.message = message
