"""Connectors configured once per project with a service credential."""

from connector_core.providers.shared.resend import ResendConnector
from connector_core.providers.shared.stripe import StripeConnector
from connector_core.providers.shared.supabase import SupabaseConnector

__all__ = ["ResendConnector", "StripeConnector", "SupabaseConnector"]
