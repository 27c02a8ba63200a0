#!/usr/bin/env python3
"""
reconcile.py

Maps one user's Personas traits onto SendGrid's custom field schema.

Only three kinds of traits survive:
- reserved fields SendGrid understands natively (only email is sent today)
- traits the operator listed in the synced traits setting
- the trait named after the audience that triggered the event

Every synced or audience trait must map to an existing custom field. A trait
that does not is never silently dropped: the whole record fails so the field
gets created in SendGrid before the batch is retried.
"""

import logging
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional, Union

from .coercion import get_field_type, to_destination_string
from .errors import UnmappedFieldError, ValidationError

logger = logging.getLogger(__name__)


def normalize_trait_name(name: str) -> str:
    """ "Account Type " -> "account_type" """
    return name.strip().lower().replace(" ", "_")


def normalize_synced_traits(names: Union[str, Iterable[str], None]) -> FrozenSet[str]:
    """Build the synced trait policy from the operator setting"""
    if names is None:
        return frozenset()
    if isinstance(names, str):
        names = names.split(",")
    return frozenset(normalize_trait_name(name) for name in names if name and name.strip())


def audience_name(traits: Mapping[str, Any]) -> Optional[str]:
    """
    Name of the active audience in a trait snapshot.
    None when the event did not come from an audience computation.
    """
    if "audience" not in traits:
        return None
    audience = traits["audience"]
    if not isinstance(audience, Mapping) or len(audience) != 1:
        logger.error(f"Audience trait must hold exactly one audience, got: {audience!r}")
        raise ValidationError(
            "Expected the audience trait to hold exactly one audience, "
            f"got {audience!r}",
            {"audience": audience})
    return next(iter(audience))


def reconcile(traits: Mapping[str, Any],
              schema: Mapping[str, str],
              reserved: FrozenSet[str],
              synced: FrozenSet[str]) -> Dict[str, Any]:
    """
    Build a SendGrid contact from a trait snapshot.

    Returns {"email": ..., "custom_fields": {field_id: value}}. Raises
    UnmappedFieldError when a synced or audience trait has no custom field.
    """
    audience = audience_name(traits)

    filtered = {
        name: value for name, value in traits.items()
        if name in synced or name in reserved or name == audience
    }

    # {trait_name: field_id or None}
    traits_to_fields = {
        name: schema.get(name) for name in filtered
        if (name in synced or name == audience) and name not in reserved
    }

    missing = {name: filtered[name] for name, field_id in traits_to_fields.items() if field_id is None}
    if missing:
        suggested = {name: get_field_type(value) for name, value in missing.items()}
        logger.error(f"Custom fields not found in SendGrid for traits: {missing}")
        logger.error(f"Create these custom fields (name: type): {suggested}")
        logger.error(f"SendGrid custom fields available: {sorted(schema)}")
        raise UnmappedFieldError(missing, {"suggested_field_types": suggested,
                                           "available_fields": sorted(schema)})

    custom_fields = {
        field_id: to_destination_string(filtered[name])
        for name, field_id in traits_to_fields.items()
    }

    contact = {}
    email = filtered.get("email")
    if isinstance(email, str) and email:
        contact["email"] = email.lower()

    contact["custom_fields"] = custom_fields
    logger.debug(f"Reconciled {len(custom_fields)} custom fields for {contact.get('email', 'contact without email')}")
    return contact
