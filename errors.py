# ============================================================================
#  errors.py - Sync Error Taxonomy
#  Version: 1.0.0
# ============================================================================
from typing import Optional


class SyncError(Exception):
    """Base class for per-item errors. The run records them and moves on."""


class TransportError(SyncError):
    """Network, timeout or undecodable response. Retry is the caller's call."""


class ShopifyError(SyncError):
    """GraphQL/REST error returned by the commerce platform."""


class FatalSyncError(SyncError):
    """Errors that affect every remaining item identically; the run aborts."""

    instruction: Optional[str] = None

    def __init__(self, message: str, instruction: Optional[str] = None):
        super().__init__(message)
        if instruction:
            self.instruction = instruction


class AuthExpiredError(FatalSyncError):
    instruction = "Re-authorize the supplier app (supplier-sync auth-url) and exchange the new code."


class PermissionDeniedError(FatalSyncError):
    instruction = (
        "Admin API token is missing a required scope (write_publications / write_products). "
        "Update the app at: Shopify Admin > Settings > Apps > Develop apps"
    )


class TerminalSupplierError(FatalSyncError):
    instruction = "Check ALIEXPRESS_APP_KEY / ALIEXPRESS_APP_SECRET."
# ============================================================================
# End of errors.py - Version: 1.0.0
# ============================================================================
