"""Membership module — address to handle registry with subscription billing."""

from effortsbank.membership.registry import MembershipRegistry

__all__ = ["MembershipRegistry"]
