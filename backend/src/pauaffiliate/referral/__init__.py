"""Referral links and attribution.

Affiliates get one link per product. Resolving a link's code counts a click
and hands back a signed binding the buyer presents at checkout.
"""

from pauaffiliate.referral.models import ReferralBinding, ReferralLink, ReferralResolution

__all__ = ["ReferralBinding", "ReferralLink", "ReferralResolution"]
