"""
Access Resolver

Maps (ConfigDocument, Selection) to the ordered list of visible features.

A feature is shown only if the plan includes it; it is allowed only if the
access matrix flags it R. Missing matrix entries are denied.
"""

from planmatrix.common.config import (
    AccessFlag,
    ConfigDocument,
    FeatureRow,
    Selection,
    feature_sort_key,
)


def resolve(document: ConfigDocument, selection: Selection) -> list[FeatureRow]:
    """
    Resolve feature visibility for a selection.

    Args:
        document: Active plans matrix
        selection: Acting role, target role and plan

    Returns:
        Rows in canonical feature order (Calls, ScreenTime, Location, ...).
        Features outside the plan are omitted. Unknown features sort last.
    """
    plan_features = document.plan_features(selection.plan)
    flags = document.flags_for(selection.acting, selection.target, selection.plan)

    return [
        FeatureRow(feature, flags.get(feature) == AccessFlag.ALLOWED)
        for feature in sorted(plan_features, key=feature_sort_key)
    ]
