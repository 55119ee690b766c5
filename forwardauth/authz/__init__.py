"""Authorization policy layer (env/ConfigMap driven).

Decides whether an authenticated identity may pass, based on:
- email whitelist
- email domains
- identity roles
with optional per-rule overrides of the global rule.
"""
