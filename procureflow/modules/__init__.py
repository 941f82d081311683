"""
Bounded-context modules.

Each module owns one workflow concern (audit, approvals, evaluation, ...) and
mutates entities only through `repositories.entity_store.EntityStore`.
"""
