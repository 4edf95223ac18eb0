"""Round lifecycle services: store, submission gate, scoring and scheduling.

Everything here is transport-agnostic. HTTP routes, socket handlers and the
background ticker call into these modules; all shared mutable state lives in
the database behind ``RoundStore`` and ``PredictionStore``.
"""
