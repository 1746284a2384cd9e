"""
Guest QR gateway service package.

The gateway fronts the guest QR portal, enforcing:
- Rate limiting: fixed windows per client and endpoint class
- Authentication: stateless signed session tokens (``x-session-token``)
- Validation and sanitization of every inbound body
- Circuit-breaking, timeouts and read retries for store calls

Structure:
- app.main: FastAPI app, routes, and gate wiring.
- app.auth: session token signing/verification and request authentication.
- app.ratelimit: fixed-window limiter and counter stores.
- app.validation: body schemas and the sanitizer.
- app.adapters: HTTP clients for the session store and staff notifier.
- app.domain: wire models, guest portal operations, notifications.
"""
