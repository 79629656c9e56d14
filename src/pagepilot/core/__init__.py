"""Site classification and navigation events."""

from .domain import base_domain, parse_base_domain_from_url
from .events import BaseDomainChanged, EventBus, UrlChanged

__all__ = ["BaseDomainChanged", "EventBus", "UrlChanged", "base_domain", "parse_base_domain_from_url"]
