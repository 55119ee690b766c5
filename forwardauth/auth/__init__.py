"""
Authentication core for the forward-auth gateway.

Design goals:
- Stateless, HMAC-signed session cookies (no server-side session store).
- CSRF-protected OAuth login handshake (nonce cookie bound to `state`).
- Cookie scope never spans unrelated hosts.
"""
