"""Authentication and authorization: roles, tokens, principal resolution and access policy."""
