"""Tracking of the page the user is currently viewing."""

from .models import PageContent, PageContext, TabInfo
from .tracker import PageContextTracker, is_restricted_url

__all__ = ["PageContent", "PageContext", "PageContextTracker", "TabInfo", "is_restricted_url"]
