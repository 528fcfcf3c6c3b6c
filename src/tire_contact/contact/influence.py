"""
Influence Contracts

Time-bounded policy allowing a subordinate data source (e.g. geometry
fallback) to propose bounded adjustments to a primary source's patch:
- Penetration, confidence and contact width only
- Never normals, never forces
- Never fabricates contact where the primary source has none

Contracts are immutable. Timestamps are always caller-supplied so that
contracts replay deterministically.

Combination rules are a closed enumeration applied by `apply_influence`;
their formula text is carried for audit only and never evaluated.
"""

import copy
import logging
import math
import uuid

import numpy as np
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

from tire_contact.contact.patch import ContactPatch


logger = logging.getLogger(__name__)

DEFAULT_LIFETIME_MS = 100.0


class AuthorityLevel(Enum):
    """Authority of the source that issued a contract."""
    SHADER_PRIMARY = "shader_primary"
    SHADER_LIMITED = "shader_limited"
    GEOMETRY_FALLBACK = "geometry_fallback"


class OperationMode(Enum):
    """What the contract does to primary values."""
    NONE = "none"
    CLAMP = "clamp"
    BIAS = "bias"
    GEOMETRY_REFERENCE = "geometry_reference"


class FormulaRule(Enum):
    """Named combination rules. Applied by code, never parsed."""
    PASS_THROUGH = "pass_through"
    CLAMP_BLEND = "clamp_blend"
    BIASED_BLEND = "biased_blend"
    SCALE_CLAMP = "scale_clamp"
    PLANE_DEPTH_BLEND = "plane_depth_blend"


FORMULA_TEXT = {
    FormulaRule.PASS_THROUGH: "v' = v",
    FormulaRule.CLAMP_BLEND: "v' = v + w * (clamp(v, min, max) - v)",
    FormulaRule.BIASED_BLEND: "v' = v + clamp(w * (proposal - v), -max_delta, max_delta)",
    FormulaRule.SCALE_CLAMP: "s' = clamp(s + w * (proposal - s), min, max)",
    FormulaRule.PLANE_DEPTH_BLEND: (
        "v' = v + clamp(w * (max(height - dot(n, cop_world), 0) - v), -max_delta, max_delta)"
    ),
}

# Rules each quantity may use
ALLOWED_RULES = {
    'penetration': (
        FormulaRule.PASS_THROUGH, FormulaRule.CLAMP_BLEND,
        FormulaRule.BIASED_BLEND, FormulaRule.PLANE_DEPTH_BLEND,
    ),
    'confidence': (FormulaRule.PASS_THROUGH, FormulaRule.CLAMP_BLEND, FormulaRule.BIASED_BLEND),
    'width': (FormulaRule.PASS_THROUGH, FormulaRule.SCALE_CLAMP),
}


# === TAGGED STRUCTURES ===

@dataclass(frozen=True)
class ContractPermissions:
    """What the subordinate source may adjust."""
    adjust_penetration: Optional[bool] = False
    adjust_confidence: Optional[bool] = False
    adjust_width: Optional[bool] = False
    adjust_regions: Optional[bool] = False
    adjust_timing: Optional[bool] = False
    modify_normal: Optional[bool] = False  # Must stay False


@dataclass(frozen=True)
class ReferencePlane:
    """Geometry reference plane: points p with dot(normal, p) = height."""
    normal: Optional[Tuple[float, float, float]] = (0.0, 0.0, 1.0)
    height: Optional[float] = 0.0


@dataclass(frozen=True)
class ContractBounds:
    """Numeric limits per adjustable quantity."""
    penetration_min: Optional[float] = 0.0  # m
    penetration_max: Optional[float] = 0.1  # m
    confidence_min: Optional[float] = 0.0
    confidence_max: Optional[float] = 1.0
    width_scale_min: Optional[float] = 0.8
    width_scale_max: Optional[float] = 1.2
    max_penetration_delta: Optional[float] = 0.005  # m per application
    max_confidence_delta: Optional[float] = 0.1
    reference_plane: Optional[ReferencePlane] = field(default_factory=ReferencePlane)


@dataclass(frozen=True)
class FormalWeights:
    """Blend weights in [0, 1]."""
    penetration: Optional[float] = 0.5
    confidence: Optional[float] = 0.5
    width: Optional[float] = 0.5
    reference: Optional[float] = 0.5


@dataclass(frozen=True)
class FormalRules:
    """Rule applied to each adjustable quantity."""
    penetration: Optional[FormulaRule] = FormulaRule.BIASED_BLEND
    confidence: Optional[FormulaRule] = FormulaRule.BIASED_BLEND
    width: Optional[FormulaRule] = FormulaRule.SCALE_CLAMP

    @classmethod
    def for_mode(cls, mode: 'OperationMode') -> 'FormalRules':
        """Default rule set for an operation mode."""
        if mode is OperationMode.CLAMP:
            return cls(FormulaRule.CLAMP_BLEND, FormulaRule.CLAMP_BLEND, FormulaRule.SCALE_CLAMP)
        if mode is OperationMode.GEOMETRY_REFERENCE:
            return cls(FormulaRule.PLANE_DEPTH_BLEND, FormulaRule.BIASED_BLEND, FormulaRule.SCALE_CLAMP)
        if mode is OperationMode.NONE:
            return cls(FormulaRule.PASS_THROUGH, FormulaRule.PASS_THROUGH, FormulaRule.PASS_THROUGH)
        return cls()

    def formula_text(self) -> Dict[str, Optional[str]]:
        """Audit text for each rule."""
        return {
            f.name: FORMULA_TEXT.get(getattr(self, f.name))
            for f in fields(self)
        }


@dataclass(frozen=True)
class SafetyFlags:
    """Safety declarations. The first two are mandatory."""
    never_modifies_normals: Optional[bool] = True
    origin_agnostic: Optional[bool] = True
    never_fabricates_contact: Optional[bool] = True
    bounded_adjustments: Optional[bool] = True


@dataclass(frozen=True)
class ContractDiagnostics:
    """Optional telemetry attached by the issuing source."""
    source_label: Optional[str] = None
    geometry_confidence: Optional[float] = None
    sample_count: Optional[int] = None
    note: Optional[str] = None


PERMISSION_KEYS = tuple(f.name for f in fields(ContractPermissions))
BOUND_KEYS = tuple(f.name for f in fields(ContractBounds) if f.name != 'reference_plane')
WEIGHT_KEYS = tuple(f.name for f in fields(FormalWeights))
RULE_KEYS = tuple(f.name for f in fields(FormalRules))
SAFETY_KEYS = tuple(f.name for f in fields(SafetyFlags))
MANDATORY_SAFETY_KEYS = ('never_modifies_normals', 'origin_agnostic')


def _is_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if not isinstance(value, (int, float, np.integer, np.floating)):
        return False
    return math.isfinite(float(value))


# === CONTRACT ===

@dataclass(frozen=True)
class InfluenceContract:
    """
    Validated, expiring influence policy.

    Never mutated once issued: use `clone` or `clone_as_new`.
    """

    contract_id: str
    created_at_ms: float
    expires_at_ms: float
    authority_level: AuthorityLevel = AuthorityLevel.GEOMETRY_FALLBACK
    operation_mode: OperationMode = OperationMode.BIAS
    permissions: Optional[ContractPermissions] = field(default_factory=ContractPermissions)
    bounds: Optional[ContractBounds] = field(default_factory=ContractBounds)
    formal_weights: Optional[FormalWeights] = field(default_factory=FormalWeights)
    formal_rules: Optional[FormalRules] = field(default_factory=FormalRules)
    safety_flags: Optional[SafetyFlags] = field(default_factory=SafetyFlags)
    diagnostics: Optional[ContractDiagnostics] = None

    @classmethod
    def create(
        cls,
        created_at_ms: float,
        authority_level: AuthorityLevel = AuthorityLevel.GEOMETRY_FALLBACK,
        operation_mode: OperationMode = OperationMode.BIAS,
        expires_at_ms: Optional[float] = None,
        permissions: Optional[ContractPermissions] = None,
        bounds: Optional[ContractBounds] = None,
        formal_weights: Optional[FormalWeights] = None,
        formal_rules: Optional[FormalRules] = None,
        diagnostics: Optional[ContractDiagnostics] = None,
        contract_id: Optional[str] = None,
    ) -> 'InfluenceContract':
        """
        Issue a new contract.

        Args:
            created_at_ms: Creation time (caller clock, never sampled here)
            authority_level: Authority of the issuing source
            operation_mode: Operation mode
            expires_at_ms: Expiry; defaults to created + 100
            permissions: Permission flags (normal modification forced off)
            bounds: Numeric bounds
            formal_weights: Blend weights
            formal_rules: Rules; defaults derived from the operation mode
            diagnostics: Optional telemetry
            contract_id: Identity; random if None

        Returns:
            InfluenceContract
        """
        created = _repair_created_at(created_at_ms)
        expires = _repair_expiry(created, expires_at_ms)
        perms = replace(permissions or ContractPermissions(), modify_normal=False)

        return cls(
            contract_id=contract_id or uuid.uuid4().hex,
            created_at_ms=created,
            expires_at_ms=expires,
            authority_level=authority_level,
            operation_mode=operation_mode,
            permissions=perms,
            bounds=bounds or ContractBounds(),
            formal_weights=formal_weights or FormalWeights(),
            formal_rules=formal_rules or FormalRules.for_mode(operation_mode),
            safety_flags=SafetyFlags(),
            diagnostics=diagnostics,
        )

    # === VALIDATION ===

    def structural_failure(self) -> Optional[str]:
        """Name of the first structural check that fails, or None."""
        perms = self.permissions
        if getattr(perms, 'modify_normal', True) is not False:
            return 'modify_normal_permitted'
        if not isinstance(perms, ContractPermissions):
            return 'permissions_missing'
        for key in PERMISSION_KEYS:
            if not isinstance(getattr(perms, key), bool):
                return f'permission_missing:{key}'

        bounds = self.bounds
        if not isinstance(bounds, ContractBounds):
            return 'bounds_missing'
        for key in BOUND_KEYS:
            if not _is_number(getattr(bounds, key)):
                return f'bound_missing:{key}'
        plane = bounds.reference_plane
        if not isinstance(plane, ReferencePlane):
            return 'reference_plane_missing'
        if (not isinstance(plane.normal, tuple) or len(plane.normal) != 3
                or not all(_is_number(v) for v in plane.normal)):
            return 'reference_plane_normal'
        if np.linalg.norm(np.array(plane.normal, dtype=float)) <= 0.0:
            return 'reference_plane_normal'
        if not _is_number(plane.height):
            return 'reference_plane_height'

        weights = self.formal_weights
        if not isinstance(weights, FormalWeights):
            return 'formal_weights_missing'
        for key in WEIGHT_KEYS:
            value = getattr(weights, key)
            if not _is_number(value) or not 0.0 <= value <= 1.0:
                return f'formal_weight_invalid:{key}'

        rules = self.formal_rules
        if not isinstance(rules, FormalRules):
            return 'formal_rules_missing'
        for key in RULE_KEYS:
            rule = getattr(rules, key)
            if not isinstance(rule, FormulaRule):
                return f'formal_rule_missing:{key}'
            if rule not in ALLOWED_RULES[key]:
                return f'formal_rule_not_applicable:{key}'

        flags = self.safety_flags
        if not isinstance(flags, SafetyFlags):
            return 'safety_flags_missing'
        for key in SAFETY_KEYS:
            if not isinstance(getattr(flags, key), bool):
                return f'safety_flag_missing:{key}'
        for key in MANDATORY_SAFETY_KEYS:
            if getattr(flags, key) is not True:
                return f'safety_flag_false:{key}'

        if not isinstance(self.authority_level, AuthorityLevel):
            return 'authority_level'
        if not isinstance(self.operation_mode, OperationMode):
            return 'operation_mode'

        if not (_is_number(self.created_at_ms) and _is_number(self.expires_at_ms)):
            return 'timestamps'
        if not self.expires_at_ms > self.created_at_ms:
            return 'expiry_order'

        diag = self.diagnostics
        if diag is not None:
            if not isinstance(diag, ContractDiagnostics):
                return 'diagnostics'
            if diag.source_label is not None and not isinstance(diag.source_label, str):
                return 'diagnostics:source_label'
            if diag.geometry_confidence is not None and not _is_number(diag.geometry_confidence):
                return 'diagnostics:geometry_confidence'
            if diag.sample_count is not None and (
                    isinstance(diag.sample_count, bool) or not isinstance(diag.sample_count, (int, np.integer))):
                return 'diagnostics:sample_count'
            if diag.note is not None and not isinstance(diag.note, str):
                return 'diagnostics:note'

        return None

    def validate_structure(self) -> bool:
        """Structural validity; pure, no time dependency."""
        return self.structural_failure() is None

    def is_expired(self, now_ms: float) -> bool:
        return now_ms > self.expires_at_ms

    def is_valid_at(self, now_ms: float) -> bool:
        return not self.is_expired(now_ms) and self.validate_structure()

    @property
    def lifetime_ms(self) -> float:
        return self.expires_at_ms - self.created_at_ms

    # === COPIES ===

    def clone(self) -> 'InfluenceContract':
        """Exact structural copy, same identity and timestamps."""
        return copy.deepcopy(self)

    def clone_as_new(self, now_ms: float, contract_id: Optional[str] = None) -> 'InfluenceContract':
        """Copy with a fresh identity and creation time; lifetime preserved."""
        lifetime = self.lifetime_ms if self.lifetime_ms > 0.0 else DEFAULT_LIFETIME_MS
        created = _repair_created_at(now_ms)
        return replace(
            copy.deepcopy(self),
            contract_id=contract_id or uuid.uuid4().hex,
            created_at_ms=created,
            expires_at_ms=created + lifetime,
        )

    # === SERIALIZATION ===

    def to_dict(self) -> Dict[str, Any]:
        """Lossless mapping form for logging, replay and exchange."""
        perms = self.permissions
        bounds = self.bounds
        plane = bounds.reference_plane if bounds is not None else None
        rules = self.formal_rules

        bounds_dict = None
        if bounds is not None:
            bounds_dict = {key: getattr(bounds, key) for key in BOUND_KEYS}
            bounds_dict['reference_plane'] = None if plane is None else {
                'normal': list(plane.normal) if plane.normal is not None else None,
                'height': plane.height,
            }

        return {
            'contract_id': self.contract_id,
            'created_at_ms': self.created_at_ms,
            'expires_at_ms': self.expires_at_ms,
            'authority_level': _enum_value(self.authority_level),
            'operation_mode': _enum_value(self.operation_mode),
            'permissions': None if perms is None else {key: getattr(perms, key) for key in PERMISSION_KEYS},
            'bounds': bounds_dict,
            'formal_weights': None if self.formal_weights is None else {
                key: getattr(self.formal_weights, key) for key in WEIGHT_KEYS
            },
            'formal_rules': None if rules is None else {
                key: _enum_value(getattr(rules, key)) for key in RULE_KEYS
            },
            'formula_text': None if rules is None else rules.formula_text(),
            'safety_flags': None if self.safety_flags is None else {
                key: getattr(self.safety_flags, key) for key in SAFETY_KEYS
            },
            'diagnostics': None if self.diagnostics is None else {
                f.name: getattr(self.diagnostics, f.name) for f in fields(ContractDiagnostics)
            },
        }

    @classmethod
    def create_from_dict(cls, data: Mapping[str, Any]) -> 'InfluenceContract':
        """
        Tolerant deserialization.

        - Legacy keys are accepted as fallbacks (e.g. 'timestamp')
        - Numeric-like strings are coerced, malformed values replaced
          by safe fallbacks with a logged warning
        - Nested input is deep-copied
        - expires_at <= created_at is repaired to created_at + 100
        - Missing sections stay missing, failing structural validation
        """
        if not isinstance(data, Mapping):
            logger.warning(
                "Contract payload is not a mapping; issuing an inert contract.",
                extra={"event": "influence.payload_type", "payload_type": type(data).__name__},
            )
            data = {}
        data = copy.deepcopy(dict(data))

        created = _repair_created_at(_coerce_float(
            _pick(data, ('created_at_ms', 'created_at', 'timestamp')), 0.0, 'created_at_ms'))
        raw_expiry = _pick(data, ('expires_at_ms', 'expires_at', 'expiry_ms'))
        expires = _repair_expiry(
            created, None if raw_expiry is None else _coerce_float(raw_expiry, None, 'expires_at_ms'))

        contract_id = _pick(data, ('contract_id', 'id'))
        contract_id = str(contract_id) if contract_id is not None else uuid.uuid4().hex

        authority = _coerce_enum(
            AuthorityLevel, _pick(data, ('authority_level', 'authority')), None, 'authority_level')
        mode = _coerce_enum(
            OperationMode, _pick(data, ('operation_mode', 'mode')), None, 'operation_mode')

        return cls(
            contract_id=contract_id,
            created_at_ms=created,
            expires_at_ms=expires,
            authority_level=authority,
            operation_mode=mode,
            permissions=_permissions_from(data.get('permissions')),
            bounds=_bounds_from(data.get('bounds')),
            formal_weights=_weights_from(data.get('formal_weights', data.get('weights'))),
            formal_rules=_rules_from(data.get('formal_rules', data.get('formulas'))),
            safety_flags=_safety_from(data.get('safety_flags', data.get('safety'))),
            diagnostics=_diagnostics_from(data.get('diagnostics', data.get('telemetry'))),
        )


# === DESERIALIZATION HELPERS ===

def _enum_value(value):
    return value.value if isinstance(value, Enum) else value


def _pick(data: Mapping, keys: Sequence[str], default=None):
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def _warn_substitution(field_name: str, value, substitute):
    logger.warning(
        "Malformed contract field replaced.",
        extra={
            "event": "influence.field_substituted",
            "field": field_name,
            "value": repr(value),
            "substitute": repr(substitute),
        },
    )


def _coerce_float(value, fallback, field_name: str):
    if value is None:
        return None
    if _is_number(value):
        return float(value)
    if isinstance(value, str):
        try:
            parsed = float(value.strip())
        except ValueError:
            parsed = None
        if parsed is not None and math.isfinite(parsed):
            return parsed
    _warn_substitution(field_name, value, fallback)
    return fallback


def _coerce_int(value, fallback, field_name: str):
    if value is None:
        return None
    if isinstance(value, (int, np.integer)) and not isinstance(value, bool):
        return int(value)
    number = _coerce_float(value, None, field_name) if not isinstance(value, bool) else None
    if number is not None and float(number).is_integer():
        return int(number)
    _warn_substitution(field_name, value, fallback)
    return fallback


def _coerce_bool(value, fallback, field_name: str):
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if _is_number(value):
        return float(value) != 0.0
    if isinstance(value, str):
        text = value.strip().lower()
        if text in ('true', '1', 'yes', 'on'):
            return True
        if text in ('false', '0', 'no', 'off'):
            return False
    _warn_substitution(field_name, value, fallback)
    return fallback


def _coerce_enum(enum_cls, value, fallback, field_name: str):
    if value is None:
        return None
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        try:
            return enum_cls(value.strip().lower())
        except ValueError:
            pass
    _warn_substitution(field_name, value, fallback)
    return fallback


def _repair_created_at(value) -> float:
    if value is None or not _is_number(value) or value < 0.0:
        _warn_substitution('created_at_ms', value, 0.0)
        return 0.0
    return float(value)


def _repair_expiry(created: float, expires) -> float:
    if expires is None:
        return created + DEFAULT_LIFETIME_MS
    if not _is_number(expires) or expires <= created:
        repaired = created + DEFAULT_LIFETIME_MS
        logger.warning(
            "Contract expiry not after creation; expiry repaired.",
            extra={
                "event": "influence.expiry_repaired",
                "created_at_ms": created,
                "expires_at_ms": expires,
                "repaired_expires_at_ms": repaired,
            },
        )
        return repaired
    return float(expires)


def _permissions_from(raw) -> Optional[ContractPermissions]:
    if not isinstance(raw, Mapping):
        return None
    values = {key: _coerce_bool(raw.get(key), False, f'permissions.{key}') for key in PERMISSION_KEYS}
    if values['modify_normal'] is None:
        legacy = _pick(raw, ('allow_normal_modification', 'modify_normals'))
        # Malformed normal permission is read as granted, which invalidates the contract
        values['modify_normal'] = _coerce_bool(legacy, True, 'permissions.modify_normal')
    return ContractPermissions(**values)


def _bounds_from(raw) -> Optional[ContractBounds]:
    if not isinstance(raw, Mapping):
        return None
    defaults = ContractBounds()
    values = {
        key: _coerce_float(raw.get(key), getattr(defaults, key), f'bounds.{key}')
        for key in BOUND_KEYS
    }

    plane_raw = raw.get('reference_plane')
    plane = None
    if isinstance(plane_raw, Mapping):
        normal = plane_raw.get('normal')
        if isinstance(normal, (list, tuple)) and len(normal) == 3:
            normal = tuple(_coerce_float(v, 0.0, 'bounds.reference_plane.normal') for v in normal)
            if any(v is None for v in normal):
                normal = None
        else:
            normal = None
        height = _coerce_float(plane_raw.get('height'), 0.0, 'bounds.reference_plane.height')
        plane = ReferencePlane(normal=normal, height=height)

    return ContractBounds(reference_plane=plane, **values)


def _weights_from(raw) -> Optional[FormalWeights]:
    if not isinstance(raw, Mapping):
        return None
    return FormalWeights(**{
        key: _coerce_float(raw.get(key), 0.0, f'formal_weights.{key}') for key in WEIGHT_KEYS
    })


def _rules_from(raw) -> Optional[FormalRules]:
    if not isinstance(raw, Mapping):
        return None
    values = {}
    for key in RULE_KEYS:
        value = raw.get(key)
        if isinstance(value, Mapping):
            value = value.get('rule')
        values[key] = _coerce_enum(FormulaRule, value, FormulaRule.PASS_THROUGH, f'formal_rules.{key}')
    return FormalRules(**values)


def _safety_from(raw) -> Optional[SafetyFlags]:
    if not isinstance(raw, Mapping):
        return None
    return SafetyFlags(**{
        key: _coerce_bool(raw.get(key), False, f'safety_flags.{key}') for key in SAFETY_KEYS
    })


def _diagnostics_from(raw) -> Optional[ContractDiagnostics]:
    if not isinstance(raw, Mapping):
        return None

    def text(key):
        value = raw.get(key)
        if value is None or isinstance(value, str):
            return value
        _warn_substitution(f'diagnostics.{key}', value, None)
        return None

    return ContractDiagnostics(
        source_label=text('source_label'),
        geometry_confidence=_coerce_float(
            raw.get('geometry_confidence'), None, 'diagnostics.geometry_confidence'),
        sample_count=_coerce_int(raw.get('sample_count'), None, 'diagnostics.sample_count'),
        note=text('note'),
    )


# === APPLICATION ===

@dataclass(frozen=True)
class InfluenceProposal:
    """Values proposed by the subordinate source for one tick."""
    penetration: Optional[float] = None  # m
    confidence: Optional[float] = None
    width_scale: Optional[float] = None


def _clamp_blend(value: float, lo: float, hi: float, weight: float) -> float:
    return value + weight * (float(np.clip(value, lo, hi)) - value)


def _biased_blend(value: float, target: Optional[float], weight: float, max_delta: float) -> float:
    if target is None:
        return value
    return value + float(np.clip(weight * (target - value), -max_delta, max_delta))


def _plane_depth(plane: ReferencePlane, point: np.ndarray) -> float:
    normal = np.array(plane.normal, dtype=float)
    normal = normal / np.linalg.norm(normal)
    return max(plane.height - float(normal @ point), 0.0)


def apply_influence(
    patch: ContactPatch,
    contract: Optional[InfluenceContract],
    now_ms: float,
    proposal: Optional[InfluenceProposal] = None,
) -> ContactPatch:
    """
    Apply a contract's bounded adjustments to a primary patch.

    Invalid, expired or inert contracts leave the patch untouched, as does
    a patch without contact. Normals are never modified.

    Args:
        patch: Primary (shader) patch
        contract: Contract issued by the subordinate source
        now_ms: Current time on the contract clock
        proposal: Subordinate source's proposed values

    Returns:
        Adjusted copy of the patch, or the patch itself when not applicable
    """
    if contract is None:
        return patch

    failure = contract.structural_failure()
    if failure is not None:
        logger.warning(
            "Influence contract rejected; primary values pass through.",
            extra={
                "event": "influence.rejected",
                "contract_id": contract.contract_id,
                "reason": failure,
            },
        )
        return patch
    if contract.is_expired(now_ms):
        logger.debug(
            "Influence contract expired.",
            extra={
                "event": "influence.expired",
                "contract_id": contract.contract_id,
                "now_ms": now_ms,
                "expires_at_ms": contract.expires_at_ms,
            },
        )
        return patch
    if contract.operation_mode is OperationMode.NONE or not patch.has_contact:
        return patch

    proposal = proposal or InfluenceProposal()
    perms = contract.permissions
    bounds = contract.bounds
    weights = contract.formal_weights
    rules = contract.formal_rules

    penetration = patch.penetration_avg
    if perms.adjust_penetration:
        rule = rules.penetration
        if rule is FormulaRule.CLAMP_BLEND:
            penetration = _clamp_blend(
                penetration, bounds.penetration_min, bounds.penetration_max, weights.penetration)
        elif rule is FormulaRule.BIASED_BLEND:
            penetration = _biased_blend(
                penetration, proposal.penetration, weights.penetration, bounds.max_penetration_delta)
        elif rule is FormulaRule.PLANE_DEPTH_BLEND:
            reference = _plane_depth(bounds.reference_plane, patch.center_world)
            penetration = _biased_blend(
                penetration, reference, weights.reference, bounds.max_penetration_delta)
        # Contact may shrink but is never created
        penetration = max(penetration, 0.0)

    confidence = patch.confidence
    if perms.adjust_confidence:
        rule = rules.confidence
        if rule is FormulaRule.CLAMP_BLEND:
            confidence = _clamp_blend(
                confidence, bounds.confidence_min, bounds.confidence_max, weights.confidence)
        elif rule is FormulaRule.BIASED_BLEND:
            confidence = _biased_blend(
                confidence, proposal.confidence, weights.confidence, bounds.max_confidence_delta)
        confidence = float(np.clip(confidence, 0.0, 1.0))

    width_scale = patch.width_scale
    if perms.adjust_width and rules.width is FormulaRule.SCALE_CLAMP:
        target = proposal.width_scale if proposal.width_scale is not None else width_scale
        width_scale = float(np.clip(
            width_scale + weights.width * (target - width_scale),
            bounds.width_scale_min, bounds.width_scale_max,
        ))

    return replace(
        patch,
        penetration_avg=penetration,
        penetration_max=max(patch.penetration_max, penetration),
        confidence=confidence,
        width_scale=width_scale,
        contract_id=contract.contract_id,
        adjusted=True,
    )
