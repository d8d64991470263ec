"""
certsnek: obtain TLS certificates from an ACME CA via the HTTP-01 challenge.

Features:
- Let's Encrypt production and staging endpoints
- Composable issuance steps threading a shared context
- Pluggable challenge responders (standalone server, webroot, ASGI middleware)
- PEM certificate chain and password protected keystore output
- YAML configuration
"""

__version__ = "0.1.0"
