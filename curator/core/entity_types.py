"""
Entity type hierarchy of the knowledge store.

Only what the managers and the task authorization need is described here:
the ancestry of a type and whether it belongs to the knowledge category.
"""
from typing import Dict, Iterable, List

# Internal objects
ENTITY_TYPE_BACKGROUND_TASK = "BackgroundTask"
ENTITY_TYPE_RETENTION_RULE = "RetentionRule"
ENTITY_TYPE_NOTIFICATION = "Notification"
ENTITY_TYPE_DELETE_OPERATION = "DeleteOperation"
ENTITY_TYPE_VOCABULARY = "Vocabulary"

# Abstract types
ABSTRACT_BASIC_OBJECT = "Basic-Object"
ABSTRACT_INTERNAL_OBJECT = "Internal-Object"
ABSTRACT_STIX_OBJECT = "Stix-Object"
ABSTRACT_STIX_META_OBJECT = "Stix-Meta-Object"
ABSTRACT_STIX_CORE_OBJECT = "Stix-Core-Object"
ABSTRACT_STIX_DOMAIN_OBJECT = "Stix-Domain-Object"
ABSTRACT_STIX_CYBER_OBSERVABLE = "Stix-Cyber-Observable"
ABSTRACT_CONTAINER = "Container"
ABSTRACT_BASIC_RELATIONSHIP = "basic-relationship"
ABSTRACT_STIX_RELATIONSHIP = "stix-relationship"
ABSTRACT_STIX_CORE_RELATIONSHIP = "stix-core-relationship"
ABSTRACT_STIX_SIGHTING_RELATIONSHIP = "stix-sighting-relationship"

# Direct parent of every known type; abstract types included
_PARENTS: Dict[str, str] = {
    ABSTRACT_INTERNAL_OBJECT: ABSTRACT_BASIC_OBJECT,
    ABSTRACT_STIX_OBJECT: ABSTRACT_BASIC_OBJECT,
    ABSTRACT_STIX_META_OBJECT: ABSTRACT_STIX_OBJECT,
    ABSTRACT_STIX_CORE_OBJECT: ABSTRACT_STIX_OBJECT,
    ABSTRACT_STIX_DOMAIN_OBJECT: ABSTRACT_STIX_CORE_OBJECT,
    ABSTRACT_STIX_CYBER_OBSERVABLE: ABSTRACT_STIX_CORE_OBJECT,
    ABSTRACT_CONTAINER: ABSTRACT_STIX_DOMAIN_OBJECT,
    ABSTRACT_STIX_RELATIONSHIP: ABSTRACT_BASIC_RELATIONSHIP,
    ABSTRACT_STIX_CORE_RELATIONSHIP: ABSTRACT_STIX_RELATIONSHIP,
    ABSTRACT_STIX_SIGHTING_RELATIONSHIP: ABSTRACT_STIX_RELATIONSHIP,
    # Internal objects
    ENTITY_TYPE_BACKGROUND_TASK: ABSTRACT_INTERNAL_OBJECT,
    ENTITY_TYPE_RETENTION_RULE: ABSTRACT_INTERNAL_OBJECT,
    ENTITY_TYPE_NOTIFICATION: ABSTRACT_INTERNAL_OBJECT,
    ENTITY_TYPE_DELETE_OPERATION: ABSTRACT_INTERNAL_OBJECT,
    "User": ABSTRACT_INTERNAL_OBJECT,
    "Group": ABSTRACT_INTERNAL_OBJECT,
    # Meta objects
    ENTITY_TYPE_VOCABULARY: ABSTRACT_STIX_META_OBJECT,
    "Label": ABSTRACT_STIX_META_OBJECT,
    "Marking-Definition": ABSTRACT_STIX_META_OBJECT,
    "External-Reference": ABSTRACT_STIX_META_OBJECT,
    "Kill-Chain-Phase": ABSTRACT_STIX_META_OBJECT,
    # Containers
    "Report": ABSTRACT_CONTAINER,
    "Grouping": ABSTRACT_CONTAINER,
    "Note": ABSTRACT_CONTAINER,
    "Opinion": ABSTRACT_CONTAINER,
    "Observed-Data": ABSTRACT_CONTAINER,
    "Case-Incident": ABSTRACT_CONTAINER,
    # Domain objects
    "Attack-Pattern": ABSTRACT_STIX_DOMAIN_OBJECT,
    "Campaign": ABSTRACT_STIX_DOMAIN_OBJECT,
    "Course-Of-Action": ABSTRACT_STIX_DOMAIN_OBJECT,
    "Identity": ABSTRACT_STIX_DOMAIN_OBJECT,
    "Organization": ABSTRACT_STIX_DOMAIN_OBJECT,
    "Incident": ABSTRACT_STIX_DOMAIN_OBJECT,
    "Indicator": ABSTRACT_STIX_DOMAIN_OBJECT,
    "Infrastructure": ABSTRACT_STIX_DOMAIN_OBJECT,
    "Intrusion-Set": ABSTRACT_STIX_DOMAIN_OBJECT,
    "Malware": ABSTRACT_STIX_DOMAIN_OBJECT,
    "Threat-Actor": ABSTRACT_STIX_DOMAIN_OBJECT,
    "Tool": ABSTRACT_STIX_DOMAIN_OBJECT,
    "Vulnerability": ABSTRACT_STIX_DOMAIN_OBJECT,
    # Observables
    "IPv4-Addr": ABSTRACT_STIX_CYBER_OBSERVABLE,
    "IPv6-Addr": ABSTRACT_STIX_CYBER_OBSERVABLE,
    "Domain-Name": ABSTRACT_STIX_CYBER_OBSERVABLE,
    "Url": ABSTRACT_STIX_CYBER_OBSERVABLE,
    "StixFile": ABSTRACT_STIX_CYBER_OBSERVABLE,
    "Email-Addr": ABSTRACT_STIX_CYBER_OBSERVABLE,
    # Relationships
    "related-to": ABSTRACT_STIX_CORE_RELATIONSHIP,
    "uses": ABSTRACT_STIX_CORE_RELATIONSHIP,
    "targets": ABSTRACT_STIX_CORE_RELATIONSHIP,
    "indicates": ABSTRACT_STIX_CORE_RELATIONSHIP,
    "stix-sighting-relationship": ABSTRACT_STIX_RELATIONSHIP,
}

# Roots of the knowledge category
_KNOWLEDGE_ROOTS = {
    ABSTRACT_STIX_CORE_OBJECT,
    ABSTRACT_STIX_CORE_RELATIONSHIP,
    ABSTRACT_STIX_SIGHTING_RELATIONSHIP,
}


def get_parent_types(entity_type: str) -> List[str]:
    """Return the ancestry of a type, closest parent first (type excluded)."""
    parents: List[str] = []
    current = _PARENTS.get(entity_type)
    while current is not None and current not in parents:
        parents.append(current)
        current = _PARENTS.get(current)
    return parents


def is_knowledge(entity_type: str) -> bool:
    """A type is knowledge if it is, or descends from, a knowledge root."""
    if entity_type in _KNOWLEDGE_ROOTS:
        return True
    return any(parent in _KNOWLEDGE_ROOTS for parent in get_parent_types(entity_type))


def are_parent_types_knowledge(parent_types: Iterable[Iterable[str]]) -> bool:
    """True when every ancestry in the list reaches the knowledge category."""
    return all(
        any(parent in _KNOWLEDGE_ROOTS for parent in ancestry)
        for ancestry in parent_types
    )
