"""Stripe shared connector: payments for a project's generated app."""

from typing import Any

import httpx

from connector_core.config import ProviderConfig
from connector_core.exceptions import ProviderError
from connector_core.protocols.connector import (
    CredentialField,
    CredentialValidation,
    Resource,
    ResourcePage,
    ResourceQuery,
    SetupInstructions,
)
from connector_core.providers.http import (
    ProviderHTTPClient,
    bearer,
    parse_resources,
    required_id,
)

STRIPE_API_URL = "https://api.stripe.com"
MAX_PAGE_SIZE = 100

# resource_type -> (list path, field used as title)
RESOURCE_TYPES: dict[str, tuple[str, str]] = {
    "customers": ("/v1/customers", "email"),
    "products": ("/v1/products", "name"),
    "prices": ("/v1/prices", "nickname"),
    "payment_links": ("/v1/payment_links", "url"),
}
# Types that support the Search API
SEARCHABLE = {"customers": "email~\"{term}\" OR name~\"{term}\"", "products": "name~\"{term}\""}


class StripeConnector:
    """Validates Stripe API keys and lists account objects."""

    key = "STRIPE"
    display_name = "Stripe"
    description = "Accept payments, manage subscriptions, and handle billing in your apps"
    icon = "/icons/stripe.svg"
    capabilities = ["payments", "subscriptions", "invoices", "customers", "payment-links"]
    required_credentials = [
        CredentialField(
            key="publishable_key",
            label="Publishable Key",
            placeholder="pk_test_...",
            pattern=r"pk_(test|live)_[A-Za-z0-9]+",
            help_url="https://dashboard.stripe.com/apikeys",
        ),
        CredentialField(
            key="secret_key",
            label="Secret Key",
            placeholder="sk_test_...",
            pattern=r"sk_(test|live)_[A-Za-z0-9]+",
            help_url="https://dashboard.stripe.com/apikeys",
        ),
        CredentialField(
            key="webhook_secret",
            label="Webhook Signing Secret",
            placeholder="whsec_...",
            pattern=r"whsec_[A-Za-z0-9]+",
            help_url="https://dashboard.stripe.com/webhooks",
            optional=True,
        ),
    ]

    def __init__(self, http: ProviderHTTPClient | None = None) -> None:
        self.http = http or ProviderHTTPClient(self.key, STRIPE_API_URL)

    @classmethod
    def from_config(
        cls,
        config: ProviderConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "StripeConnector":
        return cls(ProviderHTTPClient.from_config(cls.key, config, STRIPE_API_URL, transport=transport))

    @staticmethod
    def _mode(key: str) -> str:
        return "test" if "_test_" in key else "live"

    async def validate_credential(self, credential: dict[str, str]) -> CredentialValidation:
        secret_key = credential.get("secret_key", "")
        publishable_key = credential.get("publishable_key", "")
        if publishable_key and self._mode(publishable_key) != self._mode(secret_key):
            return CredentialValidation(
                valid=False,
                error="Publishable and secret keys must both be test or both be live keys",
            )

        try:
            account = await self.http.get_json("/v1/account", headers=bearer(secret_key))
        except ProviderError as e:
            if e.status in (401, 403):
                return CredentialValidation(valid=False, error="Invalid Stripe secret key")
            raise
        if not isinstance(account, dict):
            raise ProviderError("Stripe returned an unexpected account body", self.key)

        profile = account.get("business_profile")
        return CredentialValidation(
            valid=True,
            metadata={
                "account_id": account.get("id"),
                "business_name": profile.get("name") if isinstance(profile, dict) else None,
                "country": account.get("country"),
                "currency": account.get("default_currency"),
                "mode": self._mode(secret_key),
            },
        )

    async def query_resources(
        self,
        credential: dict[str, str],
        query: ResourceQuery,
    ) -> ResourcePage:
        resource_type = query.resource_type or "customers"
        if resource_type not in RESOURCE_TYPES:
            raise ProviderError(
                f"Stripe has no resource type '{resource_type}'", self.key, status=400
            )
        if query.search and resource_type not in SEARCHABLE:
            raise ProviderError(
                f"Stripe cannot search {resource_type}; searchable types are "
                f"{', '.join(sorted(SEARCHABLE))}",
                self.key,
                status=400,
            )
        path, title_field = RESOURCE_TYPES[resource_type]
        params: dict[str, Any] = {"limit": min(query.limit or MAX_PAGE_SIZE, MAX_PAGE_SIZE)}

        if query.search:
            # Search results page with an opaque "page" token
            term = query.search.replace('"', "")
            params["query"] = SEARCHABLE[resource_type].format(term=term)
            if query.cursor:
                params["page"] = query.cursor
            data = await self.http.get_json(
                f"{path}/search", params=params, headers=bearer(credential["secret_key"])
            )
        else:
            if query.cursor:
                params["starting_after"] = query.cursor
            data = await self.http.get_json(
                path, params=params, headers=bearer(credential["secret_key"])
            )
        if not isinstance(data, dict):
            raise ProviderError("Stripe returned an unexpected list body", self.key)

        def to_resource(item: dict[str, Any]) -> Resource:
            item_id = required_id(item)
            return Resource(
                id=item_id,
                title=item.get(title_field) or item.get("name") or item_id,
                type=item.get("object", resource_type),
                metadata={"livemode": item.get("livemode"), "created": item.get("created")},
            )

        resources = parse_resources(data.get("data"), to_resource, self.key)
        if not data.get("has_more"):
            next_cursor = None
        elif query.search:
            next_cursor = data.get("next_page")
        else:
            next_cursor = resources[-1].id if resources else None

        return ResourcePage(resources=resources, next_cursor=next_cursor)

    def setup_instructions(self, credential: dict[str, str]) -> SetupInstructions:
        env_vars = {
            "STRIPE_PUBLISHABLE_KEY": credential["publishable_key"],
            "STRIPE_SECRET_KEY": credential["secret_key"],
        }
        if credential.get("webhook_secret"):
            env_vars["STRIPE_WEBHOOK_SECRET"] = credential["webhook_secret"]
        return SetupInstructions(env_vars=env_vars, packages=["stripe@^14.0.0"])
