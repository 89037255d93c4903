"""
Rule applicability.

A rule applies to a resource when its ``resource_types`` list is empty or
contains the resource's type verbatim. There is no wildcard matching and no
resource-type hierarchy.
"""

from ...models.compliance_models import Resource, Rule


def rule_applies_to(rule: Rule, resource: Resource) -> bool:
    """Check if a rule applies to a resource"""
    if not rule.resource_types:
        return True
    return resource.resource_type in rule.resource_types
