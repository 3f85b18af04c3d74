# Services package init
"""
Affirmly Backend — Services Layer
==================================

What:  Business logic between the routes (HTTP) and the database.
How:   Services take the AsyncSession and the caller's AuthenticatedUser as
       arguments; external systems arrive through the PaymentGateway and
       PushService interfaces.

Service Inventory:
    - PaymentGateway (abstract) / StripePaymentGateway: checkout, webhooks, cancellation
    - PushService (abstract) / FirebasePushService: device push delivery
    - SubscriptionService: subscription lifecycle and webhook reconciliation
    - NotificationService: device tokens, one-off pushes, in-app inbox
    - AffirmationBroadcaster / BroadcastScheduler: periodic affirmation fan-out
    - AdminService: subscription listing and stats
"""
