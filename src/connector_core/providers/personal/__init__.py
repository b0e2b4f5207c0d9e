"""Connectors authorized by individual users, through OAuth or their own API key."""

from connector_core.providers.personal.atlassian import AtlassianConnector
from connector_core.providers.personal.elevenlabs import ElevenLabsConnector
from connector_core.providers.personal.linear import LinearConnector
from connector_core.providers.personal.notion import NotionConnector

__all__ = ["AtlassianConnector", "ElevenLabsConnector", "LinearConnector", "NotionConnector"]
