"""Account identity service.

Resolves authenticated external identities onto canonical user records,
reconciles duplicate records sharing an email, and rate limits
verification emails.
"""

__version__ = "0.1.0"
