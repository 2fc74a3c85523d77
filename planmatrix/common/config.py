"""
Configuration Dataclasses

Type-safe structures for the plans matrix document.
The document is fetched from a remote endpoint (YAML) by the Config Service
and persisted locally (JSON). Both representations share one schema:

    version: 1
    generated_at: 2025-10-04
    notes: [...]
    features: [Calls, ScreenTime, Location]
    plans:
      Free:    { features: [Calls] }
      Basic:   { features: [Calls, ScreenTime] }
      Premium: { features: [Calls, ScreenTime, Location] }
    roles: [Parent, Child, Member, self]
    access:
      Parent:
        self:
          Free: { Calls: R, ScreenTime: N, Location: N }
"""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping

from .exceptions import DocumentDecodeError


class _WireEnum(str, Enum):
    """Enum decoded case-insensitively, falling back to UNKNOWN"""

    @classmethod
    def _missing_(cls, value: Any):
        if isinstance(value, str):
            lowered = value.strip().lower()
            for member in cls:
                if member.value.lower() == lowered or member.name.lower() == lowered:
                    return member
        return cls._fallback()

    @classmethod
    def _fallback(cls):
        return cls["UNKNOWN"]

    @classmethod
    def known(cls) -> list:
        """Members in declaration order, without the fallback"""
        return [m for m in cls if m is not cls._fallback()]


class Feature(_WireEnum):
    """Capabilities that a plan can unlock"""
    CALLS = "Calls"
    SCREEN_TIME = "ScreenTime"
    LOCATION = "Location"
    UNKNOWN = "Unknown"


class PlanId(_WireEnum):
    """Subscription tiers"""
    FREE = "Free"
    BASIC = "Basic"
    PREMIUM = "Premium"
    UNKNOWN = "Unknown"


class Role(_WireEnum):
    """Actor identities. SELF means acting role == target role."""
    PARENT = "Parent"
    CHILD = "Child"
    MEMBER = "Member"
    SELF = "self"
    UNKNOWN = "Unknown"


class AccessFlag(_WireEnum):
    """Per-feature permission in the access matrix (R / N on the wire)"""
    ALLOWED = "R"
    DENIED = "N"

    @classmethod
    def _missing_(cls, value: Any):
        if value is True:
            return cls.ALLOWED
        return super()._missing_(value)

    @classmethod
    def _fallback(cls):
        # Unrecognized flags never grant access
        return cls.DENIED


# Features are always presented in this order, regardless of document order
CANONICAL_FEATURE_ORDER: tuple[Feature, ...] = (
    Feature.CALLS,
    Feature.SCREEN_TIME,
    Feature.LOCATION,
)


def feature_sort_key(feature: Feature) -> int:
    """Position of a feature in canonical order (others follow in declaration order)"""
    if feature in CANONICAL_FEATURE_ORDER:
        return CANONICAL_FEATURE_ORDER.index(feature)
    return len(CANONICAL_FEATURE_ORDER) + list(Feature).index(feature)


@dataclass(frozen=True)
class Plan:
    """Set of features included in a subscription tier"""
    features: frozenset[Feature] = field(default_factory=frozenset)

    def __post_init__(self):
        object.__setattr__(self, "features", frozenset(self.features))


AccessMatrix = Mapping[Role, Mapping[Role, Mapping[PlanId, Mapping[Feature, AccessFlag]]]]


def _freeze_access(access: Mapping) -> AccessMatrix:
    return MappingProxyType({
        acting: MappingProxyType({
            target: MappingProxyType({
                plan_id: MappingProxyType(dict(flags))
                for plan_id, flags in by_plan.items()
            })
            for target, by_plan in by_target.items()
        })
        for acting, by_target in access.items()
    })


@dataclass(frozen=True)
class ConfigDocument:
    """
    Complete plans matrix (root aggregate).

    Immutable: mappings are exposed as read-only views and every change
    produces a new document via dataclasses.replace().
    """
    version: int
    generated_at: str = ""
    notes: tuple[str, ...] = ()
    features: tuple[Feature, ...] = ()
    plans: Mapping[PlanId, Plan] = field(default_factory=dict)
    roles: frozenset[Role] = field(default_factory=frozenset)
    access: AccessMatrix = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "notes", tuple(self.notes))
        object.__setattr__(self, "features", tuple(self.features))
        object.__setattr__(self, "plans", MappingProxyType(dict(self.plans)))
        object.__setattr__(self, "roles", frozenset(self.roles))
        object.__setattr__(self, "access", _freeze_access(self.access))

    def plan_features(self, plan_id: PlanId) -> frozenset[Feature]:
        """Features included in a plan (empty if the plan is not defined)"""
        plan = self.plans.get(plan_id)
        return plan.features if plan else frozenset()

    def flags_for(
        self,
        acting: Role,
        target: Role,
        plan_id: PlanId,
    ) -> Mapping[Feature, AccessFlag]:
        """Access flags for a selection path (empty if any level is missing)"""
        return (
            self.access.get(acting, {})
            .get(target, {})
            .get(plan_id, {})
        )


@dataclass(frozen=True)
class Selection:
    """Resolution request: who is looking, at whom, under which plan"""
    acting: Role
    target: Role
    plan: PlanId


@dataclass(frozen=True)
class FeatureRow:
    """Resolved feature with its visibility"""
    feature: Feature
    allowed: bool


DEFAULT_CONFIG_DOCUMENT = ConfigDocument(
    version=0,
    generated_at="",
    notes=("Default fallback configuration (no remote data loaded)",),
    features=(Feature.CALLS,),
    plans={
        PlanId.FREE: Plan(frozenset({Feature.CALLS})),
        PlanId.BASIC: Plan(frozenset({Feature.CALLS})),
        PlanId.PREMIUM: Plan(frozenset({Feature.CALLS})),
    },
    roles=frozenset({Role.PARENT, Role.CHILD, Role.MEMBER}),
    access={
        Role.PARENT: {},
        Role.CHILD: {},
        Role.MEMBER: {},
    },
)


def _as_mapping(value: Any, name: str) -> dict:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise DocumentDecodeError(f"'{name}' must be a mapping, got {type(value).__name__}")
    return value


def _as_list(value: Any, name: str) -> list:
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        raise DocumentDecodeError(f"'{name}' must be a list, got {type(value).__name__}")
    return list(value)


def _known_keys(enum_cls, mapping: dict) -> dict:
    """Decode mapping keys, dropping keys this build does not recognize"""
    result = {}
    for key, value in mapping.items():
        member = enum_cls(key)
        if member is enum_cls._fallback():
            continue
        result[member] = value
    return result


def load_config_document(data: Any) -> ConfigDocument:
    """
    Load ConfigDocument from a decoded YAML/JSON mapping.

    Unknown enum values never fail the parse: list entries decode to
    UNKNOWN, flag values decode to DENIED and mapping keys that are not
    recognized are skipped. Unknown top-level fields are ignored.

    Raises:
        DocumentDecodeError: payload is structurally invalid
    """
    if not isinstance(data, dict):
        raise DocumentDecodeError(
            f"Config document must be a mapping, got {type(data).__name__}"
        )

    version = data.get("version")
    if isinstance(version, bool) or not isinstance(version, int):
        raise DocumentDecodeError(f"'version' must be an integer, got {version!r}")

    generated_at = data.get("generated_at")
    notes = [str(n) for n in _as_list(data.get("notes"), "notes")]
    features = [Feature(f) for f in _as_list(data.get("features"), "features")]
    roles = [Role(r) for r in _as_list(data.get("roles"), "roles")]

    plans = {}
    for plan_id, plan_data in _known_keys(PlanId, _as_mapping(data.get("plans"), "plans")).items():
        plan_data = _as_mapping(plan_data, f"plans.{plan_id.value}")
        plan_features = _as_list(plan_data.get("features"), f"plans.{plan_id.value}.features")
        plans[plan_id] = Plan(frozenset(Feature(f) for f in plan_features))

    access = {}
    for acting, by_target in _known_keys(Role, _as_mapping(data.get("access"), "access")).items():
        access[acting] = {}
        by_target = _as_mapping(by_target, f"access.{acting.value}")
        for target, by_plan in _known_keys(Role, by_target).items():
            access[acting][target] = {}
            by_plan = _as_mapping(by_plan, f"access.{acting.value}.{target.value}")
            for plan_id, flags in _known_keys(PlanId, by_plan).items():
                flags = _as_mapping(
                    flags, f"access.{acting.value}.{target.value}.{plan_id.value}"
                )
                access[acting][target][plan_id] = {
                    feature: AccessFlag(flag)
                    for feature, flag in _known_keys(Feature, flags).items()
                }

    return ConfigDocument(
        version=version,
        generated_at="" if generated_at is None else str(generated_at),
        notes=tuple(notes),
        features=tuple(features),
        plans=plans,
        roles=frozenset(roles),
        access=access,
    )


def _sorted_features(features) -> list[str]:
    return [f.value for f in sorted(features, key=feature_sort_key)]


def dump_config_document(doc: ConfigDocument) -> dict[str, Any]:
    """Encode ConfigDocument to a JSON-serialisable dict (wire schema)"""
    role_order = list(Role)
    plan_order = list(PlanId)

    return {
        "version": doc.version,
        "generated_at": doc.generated_at,
        "notes": list(doc.notes),
        "features": [f.value for f in doc.features],
        "plans": {
            plan_id.value: {"features": _sorted_features(plan.features)}
            for plan_id, plan in sorted(doc.plans.items(), key=lambda kv: plan_order.index(kv[0]))
        },
        "roles": [r.value for r in sorted(doc.roles, key=role_order.index)],
        "access": {
            acting.value: {
                target.value: {
                    plan_id.value: {
                        feature.value: flag.value
                        for feature, flag in sorted(flags.items(), key=lambda kv: feature_sort_key(kv[0]))
                    }
                    for plan_id, flags in by_plan.items()
                }
                for target, by_plan in by_target.items()
            }
            for acting, by_target in doc.access.items()
        },
    }
