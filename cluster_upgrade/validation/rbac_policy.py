"""
Access-policy evaluation for Argo CD style RBAC.

Parses ``policy.csv`` lines of the forms::

    p, <subject>, <resource>, <action>, <object>, <effect>
    g, <user-or-group>, <role>

plus ``policy.default``, and answers can-I queries. Matching uses glob
patterns; an explicit deny wins over any allow.

Releases with the ``fine-grained-rbac`` feature stop treating a plain
``update``/``delete`` grant on an application as covering the resources it
manages (``update/<group>/<kind>/<ns>/<name>``).
"""

import fnmatch
from dataclasses import dataclass
from typing import Dict, List, Optional, Set

FINE_GRAINED_FEATURE = "fine-grained-rbac"
SUBRESOURCE_ACTIONS = ("update", "delete")

# Built-in roles shipped with the server
BUILTIN_POLICY = """
p, role:readonly, *, get, *, allow
p, role:admin, *, *, *, allow
"""


@dataclass(frozen=True)
class PolicyRule:
    subject: str
    resource: str
    action: str
    obj: str
    effect: str


class RBACPolicy:
    """Parsed policy with role inheritance."""

    def __init__(self, policy_csv: str = "", default_role: Optional[str] = None):
        self.rules: List[PolicyRule] = []
        self.groups: Dict[str, Set[str]] = {}
        self.default_role = default_role or None
        self._parse(BUILTIN_POLICY)
        self._parse(policy_csv or "")

    @classmethod
    def from_configmap(cls, configmap: Optional[dict]) -> "RBACPolicy":
        data = (configmap or {}).get("data") or {}
        return cls(data.get("policy.csv", ""), data.get("policy.default"))

    def _parse(self, text: str) -> None:
        for raw in text.splitlines():
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            parts = [p.strip() for p in line.split(",")]
            if parts[0] == "p" and len(parts) >= 5:
                effect = parts[5] if len(parts) > 5 else "allow"
                self.rules.append(PolicyRule(parts[1], parts[2], parts[3], parts[4], effect))
            elif parts[0] == "g" and len(parts) >= 3:
                self.groups.setdefault(parts[1], set()).add(parts[2])

    def subjects_for(self, subject: str) -> Set[str]:
        """Subject plus every role it inherits, transitively."""
        seen = {subject}
        stack = [subject]
        while stack:
            current = stack.pop()
            for role in self.groups.get(current, ()):
                if role not in seen:
                    seen.add(role)
                    stack.append(role)
        if self.default_role:
            seen.add(self.default_role)
        return seen

    def _action_matches(self, granted: str, requested: str, fine_grained: bool) -> bool:
        if fnmatch.fnmatchcase(requested, granted):
            return True
        if not fine_grained and granted in SUBRESOURCE_ACTIONS:
            return requested.startswith(f"{granted}/")
        return False

    def enforce(
        self,
        subject: str,
        resource: str,
        action: str,
        obj: str,
        features: frozenset = frozenset(),
    ) -> bool:
        """
        Evaluate one query.

        Args:
            subject: User, group or role (e.g. "role:operator")
            resource: Resource type (e.g. "applications")
            action: Requested action (e.g. "update/apps/Deployment/ns/name")
            obj: Target object as "<project>/<name>"
            features: Feature flags of the running release

        Returns:
            True when some rule allows the query and none denies it
        """
        fine_grained = FINE_GRAINED_FEATURE in features
        subjects = self.subjects_for(subject)
        allowed = False
        for rule in self.rules:
            if rule.subject not in subjects:
                continue
            if not fnmatch.fnmatchcase(resource, rule.resource):
                continue
            if not self._action_matches(rule.action, action, fine_grained):
                continue
            if not fnmatch.fnmatchcase(obj, rule.obj):
                continue
            if rule.effect == "deny":
                return False
            allowed = True
        return allowed
