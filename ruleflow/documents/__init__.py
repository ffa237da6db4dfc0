"""
Rule set documents.

JSON-compatible schema for the rule sets a host stores and hands to the
builder, plus ``load_rule_set`` which accepts documents, dicts or JSON.
"""
