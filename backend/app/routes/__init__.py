# Routes package init
"""
Affirmly Backend — API Routes Package
======================================

Route Inventory:
    - subscription.py:   /api/subscription/*   (checkout, webhook, status, cancel,
                                                verify-payment, plans)
    - notifications.py:  /api/notifications/*  (device token, inbox)
    - admin.py:          /api/admin/*          (subscription reports, manual pushes)
    - health.py:         GET /health

Routes stay thin: resolve the identity and collaborators through
dependencies, call one service method, return its schema.
"""
