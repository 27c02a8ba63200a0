"""
Personas → SendGrid Profile Sync - Core Package

Keeps SendGrid Marketing Contacts in step with Segment Personas profiles:
identify() events trigger a trait lookup, traits are mapped onto SendGrid
custom fields and the contacts are upserted in one request per batch.

Core modules:
- config: Environment configuration, settings and logging setup
- errors: Error kinds used to decide between retry and operator alert
- coercion: Trait value conversion for SendGrid custom fields
- clients: Authenticated HTTP sessions and status classification
- field_schema: SendGrid custom field definitions
- profile_traits: Personas Profile API trait lookups
- reconcile: Trait → custom field mapping
- contacts: SendGrid contact upsert
- sync: Batch orchestration, event handlers and host entry point
- notifications: Teams notifications for failed batches
"""

__version__ = "1.0.0"

# Make modules available for import
__all__ = [
    'config',
    'errors',
    'coercion',
    'clients',
    'field_schema',
    'profile_traits',
    'reconcile',
    'contacts',
    'sync',
    'notifications'
]
