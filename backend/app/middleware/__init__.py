# Middleware package init
"""
Affirmly Backend — Middleware Package
======================================

Middleware Chain:
    Request → [Rate Limit] → [Request ID] → [Logging] → [GZip] → [CORS] → Route

    Rate limiting runs first so rejected requests cost nothing downstream.
    The Stripe webhook is exempt from it: Stripe retries on 429 and a burst
    of redeliveries must not lock out real checkouts.
"""
