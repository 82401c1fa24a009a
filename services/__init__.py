# Billing core: plan catalog, subscription store, Stripe adapter, plan-change policy,
# usage and checkout guards, and the webhook reconciler.
