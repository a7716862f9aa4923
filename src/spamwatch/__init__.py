"""spamwatch: contract spam detection across blockchain metadata providers.

The package aggregates contract metadata from third-party indexers (Moralis,
Pinax), classifies it with a completion model, and serves per-address spam
verdicts over HTTP and the command line.
"""

__version__ = "0.1.0"
