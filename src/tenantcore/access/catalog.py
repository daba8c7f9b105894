"""Generated client-side mirror of the feature registry.

The web client gates UI on the same feature ids as the server. Instead
of a hand-maintained copy, it consumes the JSON written by::

    tenantcore-feature-catalog --output web/src/lib/tiers/feature-catalog.json

The catalog carries the registry version so a stale mirror can be
detected at runtime.
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Optional, Sequence

from ..config import load_shared_config_from_env
from .constants import TenantRole, Tier
from .features import FeatureRegistry, build_registry
from .tiers import TIER_DISPLAY_NAMES, TIER_INHERITANCE, TIER_PRICING, expand_tiers, tier_features


def build_feature_catalog(registry: FeatureRegistry) -> dict[str, Any]:
    """JSON-serialisable mirror of ``registry`` and the tier model."""
    return {
        "version": registry.version,
        "features": {f.id: f.to_dict() for f in sorted(registry, key=lambda f: f.id)},
        "tiers": {
            tier: {
                "displayName": TIER_DISPLAY_NAMES[tier],
                "monthlyPrice": TIER_PRICING[tier],
                "includes": sorted(expand_tiers(tier) - {tier}),
                "features": sorted(tier_features(tier, registry)),
            }
            for tier in TIER_INHERITANCE
        },
        "tierOrderings": {
            "individual": list(Tier.INDIVIDUAL),
            "chain": list(Tier.CHAIN),
        },
        "roleHierarchy": list(TenantRole.HIERARCHY),
    }


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Export the canonical feature catalog as JSON")
    parser.add_argument(
        "--output",
        "-o",
        help="File to write (default: stdout)",
    )
    parser.add_argument(
        "--indent",
        type=int,
        default=2,
        help="JSON indentation",
    )
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    config = load_shared_config_from_env()
    registry = build_registry(config.access)
    payload = json.dumps(build_feature_catalog(registry), indent=args.indent, sort_keys=True)

    if args.output:
        path = Path(args.output)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(payload + "\n", encoding="utf-8")
        print(f"wrote {len(registry)} features (version {registry.version}) to {path}")
    else:
        sys.stdout.write(payload + "\n")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())


__all__ = ["build_feature_catalog", "main"]
