"""
Error taxonomy for the authentication and subscription gate.
Every error carries a short message suitable for direct display.
"""


class AuthGateError(Exception):
    code = "auth_error"
    default_message = "An error occurred"

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidCredentials(AuthGateError):
    code = "invalid_credentials"
    default_message = "Invalid login credentials"


class SignupRejected(AuthGateError):
    code = "signup_rejected"
    default_message = "Signup was rejected"


class ExpiredSubscription(AuthGateError):
    code = "subscription_expired"
    default_message = "subscription has expired, renewal required"


class ProvisioningFailed(AuthGateError):
    code = "provisioning_failed"
    default_message = "Failed to create trial subscription"


class LookupFailed(AuthGateError):
    code = "lookup_failed"
    default_message = "Subscription lookup failed"
