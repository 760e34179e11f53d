"""Authentication: password hashing, bearer tokens, and the request gate.

Learn: Users authenticate with username-or-email + password and receive a
signed JWT valid for a fixed window. Every protected route runs the gate
in dependencies.py, which resolves the token to a CurrentIdentity without
touching the database.

Tokens carry no revocation state. Logging out or changing a password
does not invalidate tokens already issued; they live until expiry.
"""
