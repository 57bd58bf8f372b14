"""Authentication module.

Issues and verifies signed login tokens. The chat core trusts the user id
carried by a verified token for the lifetime of the connection.

Services:
    - TokenService: JWT issue / verify.
"""
