"""Quota checks run before a membership moves to another plan."""

from __future__ import annotations

import structlog

from dotmac.commerce.checkout.models import Overlimit, PlanLimitations, Site

logger = structlog.get_logger(__name__)

DEFAULT_POST_TYPE_LABELS: dict[str, tuple[str, str]] = {
    "post": ("post", "posts"),
    "page": ("page", "pages"),
    "attachment": ("media file", "media files"),
}


class QuotaEntitlementChecker:
    """Checks the usage counters stored on a site against plan quotas."""

    def __init__(self, labels: dict[str, tuple[str, str]] | None = None) -> None:
        self.labels = {**DEFAULT_POST_TYPE_LABELS, **(labels or {})}

    def _labels(self, post_type: str) -> tuple[str, str]:
        return self.labels.get(post_type, (post_type, f"{post_type}s"))

    def check_all_post_types(
        self, limitations: PlanLimitations, site: Site
    ) -> dict[str, Overlimit] | None:
        overlimits: dict[str, Overlimit] = {}

        for post_type, quota in limitations.post_types.items():
            current = site.post_counts.get(post_type, 0)
            if current <= quota:
                continue

            singular, plural = self._labels(post_type)
            overlimits[post_type] = Overlimit(
                resource=post_type,
                current=current,
                limit=quota,
                singular=singular,
                plural=plural,
            )

        if overlimits:
            logger.debug(
                "entitlements.post_types.overlimit",
                site_id=site.id,
                post_types=sorted(overlimits),
            )
        return overlimits or None

    def check_all_domains(self, limitations: PlanLimitations, site: Site) -> Overlimit | None:
        if limitations.custom_domains is None:
            return None

        if site.custom_domain_count <= limitations.custom_domains:
            return None

        logger.debug(
            "entitlements.domains.overlimit",
            site_id=site.id,
            current=site.custom_domain_count,
            limit=limitations.custom_domains,
        )
        return Overlimit(
            resource="domains",
            current=site.custom_domain_count,
            limit=limitations.custom_domains,
            singular="custom domain",
            plural="custom domains",
        )


__all__ = ["QuotaEntitlementChecker", "DEFAULT_POST_TYPE_LABELS"]
