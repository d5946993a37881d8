"""Subscription billing: plans, providers (Stripe, Opaybd), renewal and usage metering."""
