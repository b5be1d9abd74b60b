"""
Portal Auth Module

Sessions, registration and credential handling.
"""

from portal.auth.passwords import hash_password, verify_password
from portal.auth.registration import (
    CompletedRegistration,
    RegistrationTicket,
    RegistrationWorkflow,
    normalize_incoming_token,
)
from portal.auth.sessions import SessionContext, SessionService

__all__ = [
    # Credentials
    'hash_password',
    'verify_password',
    # Sessions
    'SessionService',
    'SessionContext',
    # Registration
    'RegistrationWorkflow',
    'RegistrationTicket',
    'CompletedRegistration',
    'normalize_incoming_token',
]
